import math
import time
import unittest

from creatartis.base.chronometer import Chronometer
from creatartis.base.future import Future
from creatartis.base.scheduling import ManualScheduler
from creatartis.base.statistics import Statistic, Statistics, keys_id, normalize_keys


class KeysTest(unittest.TestCase):
    def test_normalize(self):
        self.assertEqual(normalize_keys('a'), {'a': True})
        self.assertEqual(normalize_keys(['a', 'b']), {'a': True, 'b': True})
        self.assertEqual(normalize_keys({'kind': 'x'}), {'kind': 'x'})
        self.assertEqual(normalize_keys(None), {})

    def test_invalid(self):
        with self.assertRaises(TypeError):
            normalize_keys(12)

    def test_id_ignores_order(self):
        self.assertEqual(keys_id(['b', 'a']), keys_id(('a', 'b')))
        self.assertEqual(keys_id({'y': 2, 'x': 1}), keys_id({'x': 1, 'y': 2}))
        self.assertNotEqual(keys_id({'x': 1}), keys_id({'x': 2}))


class StatisticTest(unittest.TestCase):
    def test_empty(self):
        stat = Statistic('empty')

        self.assertEqual(stat.count(), 0)
        self.assertTrue(math.isnan(stat.average()))
        self.assertTrue(math.isnan(stat.variance()))

    def test_accumulation(self):
        stat = Statistic('x').add_all([2, 4, 4, 4, 5, 5, 7, 9])

        self.assertEqual(stat.count(), 8)
        self.assertEqual(stat.sum(), 40)
        self.assertEqual(stat.minimum(), 2)
        self.assertEqual(stat.maximum(), 9)
        self.assertAlmostEqual(stat.average(), 5)
        self.assertAlmostEqual(stat.variance(), 4)
        self.assertAlmostEqual(stat.standard_deviation(), 2)
        self.assertAlmostEqual(stat.variance(center=0), stat.square_sum() / 8)

    def test_extremes_keep_data(self):
        stat = Statistic('latency')
        stat.add(0.5, 'req-1')
        stat.add(0.1, 'req-2')
        stat.add(0.9, 'req-3')

        self.assertEqual(stat.minimum_data(), 'req-2')
        self.assertEqual(stat.maximum_data(), 'req-3')

    def test_gain(self):
        stat = Statistic('g').add(10).gain(20, 0.5)

        self.assertAlmostEqual(stat.count(), 1.5)
        self.assertAlmostEqual(stat.sum(), 25)

    def test_add_statistic(self):
        a = Statistic('a').add_all([1, 2])
        b = Statistic('b').add_all([10, 20], data='b')

        a.add_statistic(b)

        self.assertEqual(a.count(), 4)
        self.assertEqual(a.sum(), 33)
        self.assertEqual(a.maximum(), 20)
        self.assertEqual(a.maximum_data(), 'b')

    def test_applies(self):
        stat = Statistic({'kind': 'error', 'server': 'a'})

        self.assertTrue(stat.applies('kind'))
        self.assertTrue(stat.applies(['kind', 'server']))
        self.assertTrue(stat.applies({'server': 'a'}))
        self.assertFalse(stat.applies({'server': 'b'}))
        self.assertFalse(stat.applies('other'))
        self.assertTrue(stat.applies(None))

    def test_reset(self):
        stat = Statistic('r').add(3).reset()

        self.assertEqual(stat.count(), 0)
        self.assertEqual(stat.minimum(), math.inf)

    def test_timing(self):
        stat = Statistic('t')

        with self.assertRaises(RuntimeError):
            stat.add_time()

        stat.start_time(time.perf_counter() - 1.0)
        stat.add_tick()
        stat.add_time()

        self.assertEqual(stat.count(), 2)
        self.assertGreaterEqual(stat.maximum(), 1.0)
        self.assertLess(stat.minimum(), 1.0)

    def test_str(self):
        self.assertTrue(str(Statistic('s').add(1)).startswith('{"s": true}\t1\t'))


class StatisticsTest(unittest.TestCase):
    def setUp(self):
        self.stats = Statistics()
        self.stats.add(['latency', 'server-a'], 1)
        self.stats.add(['server-a', 'latency'], 3)
        self.stats.add(['latency', 'server-b'], 5)
        self.stats.add({'kind': 'error', 'server': 'server-a'}, 1)

    def test_stat_is_shared_by_equivalent_keys(self):
        self.assertIs(self.stats.stat(['latency', 'server-a']), self.stats.stat(('server-a', 'latency')))
        self.assertEqual(self.stats.stat(['latency', 'server-a']).count(), 2)

    def test_queries(self):
        self.assertEqual(self.stats.count('latency'), 3)
        self.assertEqual(self.stats.sum('latency'), 9)
        self.assertEqual(self.stats.average('latency'), 3)
        self.assertEqual(self.stats.minimum('latency'), 1)
        self.assertEqual(self.stats.maximum('latency'), 5)
        self.assertEqual(self.stats.count('server-a'), 2)
        self.assertEqual(self.stats.count({'kind': 'error'}), 1)
        self.assertEqual(self.stats.count(), 4)
        self.assertAlmostEqual(self.stats.standard_deviation('latency') ** 2, self.stats.variance('latency'))
        self.assertEqual(self.stats.square_sum('server-b'), 25)

    def test_reset(self):
        self.stats.reset('latency')

        self.assertEqual(self.stats.count('latency'), 0)
        self.assertEqual(self.stats.count({'kind': 'error'}), 1)

    def test_add_object(self):
        stats = Statistics().add_object({'a': 1, 'b': [2, 3]})

        self.assertEqual(stats.count('b'), 2)
        self.assertEqual(stats.sum('a'), 1)

        with self.assertRaises(ValueError):
            stats.add_object({})

    def test_add_statistics(self):
        merged = Statistics().add_statistics(self.stats, 'latency')

        self.assertEqual(merged.count(), 3)
        self.assertEqual(merged.count({'kind': 'error'}), 0)

    def test_add_statistic(self):
        stats = Statistics()
        stats.add_statistic(Statistic('x').add_all([1, 2, 3]))

        self.assertEqual(stats.sum('x'), 6)

    def test_gain_and_add_all(self):
        stats = Statistics()
        stats.add_all('g', [1, 1])
        stats.gain('g', 4, 0.5)

        self.assertAlmostEqual(stats.count('g'), 2)
        self.assertAlmostEqual(stats.sum('g'), 5)

    def test_timing_shortcuts(self):
        stats = Statistics()
        stats.start_time('op')
        stats.add_tick('op')
        stats.add_time('op')

        self.assertEqual(stats.count('op'), 2)

    def test_format(self):
        text = self.stats.format(field_separator=',', record_separator=';')
        records = text.split(';')

        self.assertEqual(len(records), 3)
        self.assertTrue(records[0].startswith('{"latency": true, "server-a": true},2,1.0,'))

    def test_str(self):
        self.assertEqual(len(str(self.stats).split('\n')), 3)


class FutureStatisticsTest(unittest.TestCase):
    def setUp(self):
        self.scheduler = ManualScheduler()
        self.stats = Statistics()

    def test_add_future(self):
        fulfilled = Future(self.scheduler)
        rejected = Future(self.scheduler)

        self.assertIs(self.stats.add_future('results', fulfilled), fulfilled)
        self.stats.add_future('results', rejected)

        fulfilled.fulfill(7)
        rejected.fail(ValueError('ignored'))
        self.scheduler.run_until_idle()

        self.assertEqual(self.stats.count('results'), 1)
        self.assertEqual(self.stats.sum('results'), 7)

    def test_add_future_time(self):
        future = Future(self.scheduler)
        self.stats.add_future_time('duration', future)

        future.fail(OSError('counted anyway'))
        self.scheduler.run_until_idle()

        self.assertEqual(self.stats.count('duration'), 1)
        self.assertGreaterEqual(self.stats.minimum('duration'), 0)


class ChronometerTest(unittest.TestCase):
    def test_time_and_tick(self):
        chronometer = Chronometer(time.perf_counter() - 2.0)

        self.assertGreaterEqual(chronometer.time(), 2.0)
        self.assertGreaterEqual(chronometer.tick(), 2.0)
        self.assertLess(chronometer.time(), 2.0)

    def test_reset(self):
        chronometer = Chronometer(time.perf_counter() - 2.0).reset()

        self.assertLess(chronometer.time(), 2.0)
