"""
Unit tests for VideoOptimizer
Tests result construction, caching, request coalescing and batch processing
"""

import json
import shutil
import tempfile
import threading
import time
import unittest

import pytest

from vidopt.capability_detector import static_playback_probe
from vidopt.config_manager import ConfigManager
from vidopt.optimization_options import InvalidOptionsError, OptimizationOptions
from vidopt.video_config import CODEC_MIME_TYPES
from vidopt.video_optimizer import RuntimeContext, VideoOptimizer, create_video_optimizer

CLOUDFLARE_ASSET = 'https://videodelivery.net/abc123'
MUX_ASSET = 'https://stream.mux.com/xyz789'


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


class TestProcess(unittest.TestCase):

    def setUp(self):
        self.optimizer = VideoOptimizer()

    def test_cloudflare_medium_quality(self):
        result = self.optimizer.process(CLOUDFLARE_ASSET, {'width': 1280, 'height': 720, 'quality': 'medium'})

        self.assertEqual(result.format, 'h264')
        self.assertEqual(result.optimized_url, 'https://videodelivery.net/abc123/1280x720,br=2000/mp4')
        self.assertEqual(result.bitrate, 2000)
        self.assertEqual(result.estimated_size, 15.0)
        self.assertAlmostEqual(result.compression_ratio, 1 / 3)
        self.assertEqual(result.poster_url,
                         'https://videodelivery.net/abc123/thumbnails/thumbnail.jpg?time=5s&width=1280&height=720')
        self.assertEqual(len(result.thumbnails), 10)
        self.assertEqual(result.adaptive_manifest.format, 'hls')
        self.assertEqual(result.metadata.quality_settings['key'], 'medium')
        self.assertEqual(result.metadata.quality_settings['source'], 'explicit')
        self.assertEqual(result.metadata.delivered_by, 'cloudflare_stream')
        self.assertEqual(result.metadata.original_src, CLOUDFLARE_ASSET)

    def test_defaults_echoed_in_result(self):
        result = self.optimizer.process(CLOUDFLARE_ASSET)
        self.assertEqual((result.width, result.height), (1280, 720))
        self.assertEqual(result.framerate, 30)
        self.assertEqual(result.duration, 0)
        self.assertEqual(result.container, 'mp4')
        self.assertFalse(result.playback_options.muted)
        self.assertTrue(result.playback_options.controls)
        # Default network (4g, 10 Mbps) recommends high
        self.assertEqual(result.metadata.quality_settings['key'], 'high')
        self.assertEqual(result.metadata.quality_settings['source'], 'network')

    def test_preferred_codec_from_capabilities(self):
        probe = static_playback_probe({CODEC_MIME_TYPES['vp9']: 'probably'})
        optimizer = VideoOptimizer(RuntimeContext.create(probe))
        result = optimizer.process(CLOUDFLARE_ASSET, {'quality': 'medium', 'duration': 60})
        self.assertEqual(result.format, 'vp9')
        self.assertEqual(result.estimated_size, 10.5)
        self.assertEqual(result.adaptive_manifest.format, 'dash')

    def test_explicit_format_overrides_negotiation(self):
        result = self.optimizer.process(CLOUDFLARE_ASSET, {'format': 'av1', 'quality': 'medium'})
        self.assertEqual(result.format, 'av1')
        self.assertEqual(result.estimated_size, 7.5)

    def test_thumbnail_count(self):
        result = self.optimizer.process(CLOUDFLARE_ASSET, {'thumbnail_count': 4})
        self.assertEqual(len(result.thumbnails), 4)
        for thumb, pct in zip(result.thumbnails, ('0', '25', '50', '75')):
            self.assertIn(f'time={pct}%', thumb)

    def test_disabled_features(self):
        result = self.optimizer.process(CLOUDFLARE_ASSET, {'generateThumbnails': False, 'adaptiveStreaming': False})
        self.assertEqual(result.thumbnails, ())
        self.assertIsNone(result.adaptive_manifest)
        self.assertFalse(result.metadata.adaptive_streaming)

    def test_poster_offset_from_duration(self):
        result = self.optimizer.process(CLOUDFLARE_ASSET, {'duration': 120})
        self.assertIn('time=12s', result.poster_url)

    def test_explicit_poster_is_used(self):
        result = self.optimizer.process(CLOUDFLARE_ASSET, {'poster': 'https://cdn.example.com/p.jpg'})
        self.assertEqual(result.poster_url, 'https://cdn.example.com/p.jpg')

    def test_numeric_quality_is_custom_bitrate(self):
        result = self.optimizer.process(CLOUDFLARE_ASSET, {'quality': 1500})
        self.assertEqual(result.bitrate, 1500)
        settings = result.metadata.quality_settings
        self.assertEqual((settings['key'], settings['crf'], settings['source']), ('custom', 28, 'explicit'))
        self.assertIn('br=1500', result.optimized_url)

    def test_bitrate_option_is_custom_bitrate(self):
        result = self.optimizer.process(CLOUDFLARE_ASSET, {'bitrate': 1200})
        self.assertEqual(result.bitrate, 1200)
        self.assertEqual(result.metadata.quality_settings['source'], 'bitrate')

    def test_network_recommendation(self):
        self.optimizer.update_network_conditions(effective_type='slow-2g')
        result = self.optimizer.process(CLOUDFLARE_ASSET)
        self.assertEqual(result.metadata.quality_settings['key'], 'mobile')
        self.assertEqual(result.bitrate, 400)

    def test_unknown_source_passes_through(self):
        src = '/media/uploads/clip.mp4'
        result = self.optimizer.process(src, {'width': 640, 'height': 360})
        self.assertEqual(result.optimized_url, src)
        self.assertEqual(result.poster_url, '/images/video-poster-placeholder.jpg')
        self.assertEqual(result.thumbnails, ())
        self.assertEqual(result.metadata.delivered_by, 'passthrough')

    def test_asset_host_decides_provider(self):
        result = self.optimizer.process(MUX_ASSET, {'width': 640, 'height': 360, 'quality': 'low'})
        self.assertEqual(result.metadata.cdn_provider, 'cloudflare_stream')
        self.assertEqual(result.metadata.delivered_by, 'mux')
        self.assertTrue(result.optimized_url.startswith(MUX_ASSET + '?'))
        self.assertIn('bitrate=800', result.optimized_url)

    def test_trim_and_framerate(self):
        result = self.optimizer.process(CLOUDFLARE_ASSET, {
            'width': 1280, 'height': 720, 'quality': 'medium',
            'framerate': 24, 'startTime': 5, 'endTime': 15,
        })
        self.assertEqual(result.optimized_url,
                         'https://videodelivery.net/abc123/1280x720,br=2000,fps=24,start=5,end=15/mp4')

    def test_result_is_json_serializable(self):
        data = self.optimizer.process(CLOUDFLARE_ASSET, {'quality': 'low'}).to_dict()
        encoded = json.loads(json.dumps(data))
        self.assertEqual(encoded['adaptive_manifest']['default_variant']['label'], '720p')
        self.assertIsInstance(encoded['thumbnails'], list)

    def test_invalid_input_rejected_before_work(self):
        for src, options in (('', None), (None, None), (CLOUDFLARE_ASSET, {'quality': 'best'}),
                             (CLOUDFLARE_ASSET, ['width', 1280])):
            with self.assertRaises(InvalidOptionsError):
                self.optimizer.process(src, options)
        stats = self.optimizer.stats()
        self.assertEqual((stats.computations, stats.cache_size, stats.in_flight), (0, 0, 0))

    def test_accepts_options_object(self):
        result = self.optimizer.process(CLOUDFLARE_ASSET, OptimizationOptions(quality='ultra'))
        self.assertEqual(result.bitrate, 8000)


class TestCaching(unittest.TestCase):

    def setUp(self):
        self.optimizer = VideoOptimizer()

    def test_cache_key_is_deterministic(self):
        a = OptimizationOptions(width=1280, height=720, start_time=2)
        b = OptimizationOptions.from_dict({'height': 720.0, 'startTime': 2.0, 'width': 1280})
        key = VideoOptimizer.generate_cache_key(CLOUDFLARE_ASSET, a)
        self.assertEqual(key, VideoOptimizer.generate_cache_key(CLOUDFLARE_ASSET, b))
        self.assertNotEqual(key, VideoOptimizer.generate_cache_key(MUX_ASSET, a))
        self.assertNotEqual(key, VideoOptimizer.generate_cache_key(CLOUDFLARE_ASSET, OptimizationOptions(width=640)))

    def test_second_call_is_a_cache_hit(self):
        first = self.optimizer.process(CLOUDFLARE_ASSET, {'quality': 'medium'})
        second = self.optimizer.process(CLOUDFLARE_ASSET, {'quality': 'medium'})
        self.assertIs(first, second)
        stats = self.optimizer.stats()
        self.assertEqual(stats.computations, 1)
        self.assertEqual(stats.cache_hits, 1)
        self.assertEqual(stats.cache_misses, 1)
        self.assertEqual(stats.cache_size, 1)
        self.assertEqual(first.metadata.cache_key, VideoOptimizer.generate_cache_key(
            CLOUDFLARE_ASSET, self.optimizer.build_options({'quality': 'medium'})))

    def test_clear_cache_forces_recomputation(self):
        probe = static_playback_probe({CODEC_MIME_TYPES['av1']: 'probably'})
        optimizer = VideoOptimizer(RuntimeContext.create(probe))
        optimizer.process(CLOUDFLARE_ASSET)
        optimizer.clear_cache()

        stats = optimizer.stats()
        self.assertEqual(stats.cache_size, 0)
        self.assertTrue(stats.browser_capabilities['av1'])

        optimizer.process(CLOUDFLARE_ASSET)
        self.assertEqual(optimizer.stats().computations, 2)

    def test_bounded_cache_evicts_oldest(self):
        optimizer = VideoOptimizer(max_entries=2)
        for src in ('a.mp4', 'b.mp4', 'c.mp4'):
            optimizer.process(src)
        self.assertEqual(optimizer.stats().cache_size, 2)

        optimizer.process('c.mp4')
        self.assertEqual(optimizer.stats().computations, 3)
        optimizer.process('a.mp4')
        self.assertEqual(optimizer.stats().computations, 4)

    def test_stats_aggregates(self):
        self.optimizer.process(CLOUDFLARE_ASSET, {'quality': 'medium'})
        self.optimizer.process(CLOUDFLARE_ASSET, {'quality': 'medium', 'format': 'av1'})
        stats = self.optimizer.stats()
        self.assertEqual(stats.format_distribution, {'h264': 1, 'av1': 1})
        self.assertEqual(stats.total_estimated_size, 22.5)
        self.assertAlmostEqual(stats.average_compression_ratio, (1 / 3 + 2 / 3) / 2)
        self.assertEqual(stats.network_conditions.effective_type, '4g')
        json.dumps(stats.to_dict())

    def test_empty_stats(self):
        stats = self.optimizer.stats()
        self.assertEqual(stats.average_compression_ratio, 0.0)
        self.assertEqual(stats.format_distribution, {})


class TestSingleFlight(unittest.TestCase):

    def setUp(self):
        self.optimizer = VideoOptimizer()
        self.release = threading.Event()
        self.original = self.optimizer._perform_processing

    def _block_processing(self, fail=False):
        def blocking(src, opts, cache_key):
            self.release.wait(5)
            if fail:
                raise RuntimeError("provider exploded")
            return self.original(src, opts, cache_key)
        self.optimizer._perform_processing = blocking

    def _run_concurrently(self, count):
        results, errors = [], []

        def worker():
            try:
                results.append(self.optimizer.process(CLOUDFLARE_ASSET, {'quality': 'medium'}))
            except RuntimeError as e:
                errors.append(e)

        owner = threading.Thread(target=worker)
        owner.start()
        self.assertTrue(wait_until(lambda: self.optimizer.stats().in_flight == 1))

        waiters = [threading.Thread(target=worker) for _ in range(count - 1)]
        for t in waiters:
            t.start()
        self.assertTrue(wait_until(lambda: self.optimizer.stats().coalesced == count - 1))

        self.release.set()
        for t in [owner] + waiters:
            t.join(5)
        return results, errors

    def test_concurrent_identical_requests_compute_once(self):
        self._block_processing()
        results, errors = self._run_concurrently(8)

        self.assertEqual(errors, [])
        self.assertEqual(len(results), 8)
        self.assertTrue(all(r is results[0] for r in results))

        stats = self.optimizer.stats()
        self.assertEqual(stats.computations, 1)
        self.assertEqual(stats.coalesced, 7)
        self.assertEqual(stats.in_flight, 0)
        self.assertEqual(stats.cache_size, 1)

    def test_failure_reaches_every_waiter_and_is_not_cached(self):
        self._block_processing(fail=True)
        results, errors = self._run_concurrently(4)

        self.assertEqual(results, [])
        self.assertEqual(len(errors), 4)
        stats = self.optimizer.stats()
        self.assertEqual((stats.in_flight, stats.cache_size), (0, 0))

        # The key is retried from scratch afterwards
        self.optimizer._perform_processing = self.original
        result = self.optimizer.process(CLOUDFLARE_ASSET, {'quality': 'medium'})
        self.assertEqual(result.bitrate, 2000)
        self.assertEqual(self.optimizer.stats().cache_size, 1)

    def test_distinct_requests_run_independently(self):
        self.optimizer.process_batch([(f'clip-{i}.mp4', None) for i in range(6)])
        stats = self.optimizer.stats()
        self.assertEqual(stats.computations, 6)
        self.assertEqual(stats.coalesced, 0)


class TestBatch(unittest.TestCase):

    def setUp(self):
        self.optimizer = VideoOptimizer(max_workers=4)

    def test_results_keep_input_order(self):
        requests = [
            (CLOUDFLARE_ASSET, {'quality': 'low'}),
            {'src': MUX_ASSET, 'options': {'quality': 'high'}},
            ('/local/file.mp4', None),
            {'src': CLOUDFLARE_ASSET, 'options': {'quality': 'low'}},
        ]
        results = self.optimizer.process_batch(requests)
        self.assertEqual([r.metadata.original_src for r in results],
                         [CLOUDFLARE_ASSET, MUX_ASSET, '/local/file.mp4', CLOUDFLARE_ASSET])
        self.assertEqual(results[0].bitrate, 800)
        self.assertEqual(results[1].bitrate, 4000)
        self.assertIs(results[0], results[3])
        self.assertEqual(self.optimizer.stats().computations, 3)

    def test_empty_batch(self):
        self.assertEqual(self.optimizer.process_batch([]), [])

    def test_invalid_item_fails_before_any_work(self):
        with self.assertRaises(InvalidOptionsError):
            self.optimizer.process_batch([
                (CLOUDFLARE_ASSET, {'quality': 'low'}),
                (CLOUDFLARE_ASSET, {'quality': 'bogus'}),
            ])
        with self.assertRaises(InvalidOptionsError):
            self.optimizer.process_batch([{'options': {}}])
        with self.assertRaises(InvalidOptionsError):
            self.optimizer.process_batch(['just-a-string'])
        self.assertEqual(self.optimizer.stats().computations, 0)

    def test_first_failure_is_raised_and_successes_are_cached(self):
        original = self.optimizer._perform_processing

        def flaky(src, opts, cache_key):
            if src == 'bad.mp4':
                raise RuntimeError(f"cannot process {src}")
            return original(src, opts, cache_key)

        self.optimizer._perform_processing = flaky
        with self.assertRaises(RuntimeError) as ctx:
            self.optimizer.process_batch([('good.mp4', None), ('bad.mp4', None), ('other.mp4', None)])
        self.assertIn('bad.mp4', str(ctx.exception))

        stats = self.optimizer.stats()
        self.assertEqual(stats.cache_size, 2)
        self.assertEqual(stats.in_flight, 0)


class TestFactory(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_create_from_packaged_config(self):
        optimizer = create_video_optimizer(ConfigManager(self.temp_dir))
        self.assertEqual(optimizer.default_provider, 'cloudflare_stream')
        self.assertIsNone(optimizer.max_entries)
        self.assertEqual(optimizer.get_optimal_format(), 'h264')
        self.assertEqual(optimizer.stats().network_conditions.downlink, 10.0)

    def test_config_overrides(self):
        config = ConfigManager(self.temp_dir)
        config.update_from_args({
            'delivery_optimizer.thumbnails.count': 2,
            'delivery_optimizer.cache.max_entries': 1,
            'delivery_optimizer.network.defaults.downlink': 1.0,
            'delivery_optimizer.poster.placeholder': '/static/none.jpg',
        })
        optimizer = create_video_optimizer(config)
        result = optimizer.process('clip.mp4')
        self.assertEqual(result.poster_url, '/static/none.jpg')
        self.assertEqual(result.metadata.quality_settings['key'], 'low')

        result = optimizer.process(CLOUDFLARE_ASSET)
        self.assertEqual(len(result.thumbnails), 2)
        self.assertEqual(optimizer.max_entries, 1)
        self.assertEqual(optimizer.stats().cache_size, 1)

    def test_explicit_probe(self):
        probe = static_playback_probe({CODEC_MIME_TYPES['h265']: 'maybe'})
        optimizer = create_video_optimizer(ConfigManager(self.temp_dir), probe=probe)
        self.assertEqual(optimizer.get_optimal_format(), 'h265')


def test_same_key_from_different_spellings_hits_cache():
    optimizer = VideoOptimizer()
    optimizer.process(CLOUDFLARE_ASSET, {'width': 1280, 'height': 720, 'startTime': 3})
    optimizer.process(CLOUDFLARE_ASSET, {'width': 1280.0, 'height': 720, 'start_time': 3.0})
    assert optimizer.stats().computations == 1


def test_float_dimensions_are_delivered_as_integers():
    optimizer = VideoOptimizer()
    first = optimizer.process(CLOUDFLARE_ASSET, {'width': 1280.0, 'height': 720.0, 'quality': 'medium'})
    second = optimizer.process(CLOUDFLARE_ASSET, {'width': 1280, 'height': 720, 'quality': 'medium'})
    assert second is first
    assert second.optimized_url == 'https://videodelivery.net/abc123/1280x720,br=2000/mp4'
    assert 'width=1280&height=720' in second.poster_url
    assert (second.width, second.height) == (1280, 720)
    assert isinstance(second.width, int)


def test_options_object_and_mapping_agree():
    optimizer = VideoOptimizer()
    mapped = optimizer.process(CLOUDFLARE_ASSET, {'quality': 'low'})
    direct = optimizer.process(CLOUDFLARE_ASSET, OptimizationOptions(quality='low'))
    assert mapped is direct


@pytest.mark.parametrize("quality,bitrate", [
    ('ultra', 8000), ('high', 4000), ('medium', 2000), ('low', 800), ('mobile', 400),
])
def test_preset_bitrates(quality, bitrate):
    assert VideoOptimizer().process(CLOUDFLARE_ASSET, {'quality': quality}).bitrate == bitrate
