import unittest
from urllib.parse import unquote

from playlist_proxy.playlist import (
    MASTER,
    MEDIA,
    classify,
    is_master,
    is_media_file,
    is_playlist,
    rewrite_media_playlist,
)


def _decode_proxy_url(proxied_url):
    assert proxied_url.startswith('/proxy/'), proxied_url
    return unquote(proxied_url[len('/proxy/'):])


def _extract_urls(playlist_text):
    return [
        line.strip()
        for line in playlist_text.splitlines()
        if line.strip() and not line.strip().startswith('#')
    ]


MEDIA_PLAYLIST = """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-TARGETDURATION:10
#EXT-X-KEY:METHOD=AES-128,URI="keys/key1.key",IV=0xabcdef
#EXT-X-MAP:URI="init.mp4"
#EXTINF:10,
seg1.ts

#EXT-X-DISCONTINUITY
#EXTINF:10,
sub/seg2.ts
#EXTINF:10,
https://cdn.example.com/seg3.ts
#EXT-X-ENDLIST
"""


class ContentClassifierTests(unittest.TestCase):
    def test_playlist_by_content_type(self):
        for content_type in (
            'application/vnd.apple.mpegurl',
            'application/x-mpegURL; charset=utf-8',
            'audio/mpegurl',
        ):
            with self.subTest(content_type=content_type):
                self.assertTrue(is_playlist('garbage', content_type))

    def test_playlist_by_signature(self):
        self.assertTrue(is_playlist('  \n#EXTM3U\n#EXTINF:10,\na.ts', 'text/plain'))
        self.assertTrue(is_playlist('#EXTM3U', ''))
        self.assertFalse(is_playlist('<html></html>', 'text/html'))
        self.assertFalse(is_playlist('', None))

    def test_master_markers(self):
        self.assertTrue(is_master('#EXTM3U\n#EXT-X-STREAM-INF:BANDWIDTH=1\nlow.m3u8'))
        self.assertTrue(is_master('#EXTM3U\n#EXT-X-MEDIA:TYPE=AUDIO,URI="a.m3u8"'))
        self.assertFalse(is_master(MEDIA_PLAYLIST))

    def test_classify(self):
        self.assertEqual(classify('#EXTM3U\n#EXT-X-STREAM-INF:BANDWIDTH=1\nlow.m3u8', ''), MASTER)
        self.assertEqual(classify(MEDIA_PLAYLIST, ''), MEDIA)
        self.assertIsNone(classify('plain text', 'text/plain'))

    def test_media_file_detection(self):
        self.assertTrue(is_media_file('https://example.com/a.bin', 'video/mp2t'))
        self.assertTrue(is_media_file('https://example.com/seg.TS', ''))
        self.assertTrue(is_media_file('https://example.com/seg.ts?token=1', None))
        self.assertFalse(is_media_file('https://example.com/playlist.m3u8', 'application/vnd.apple.mpegurl'))


class MediaPlaylistRewriteTests(unittest.TestCase):
    source_url = 'https://origin.example.com/path/index.m3u8'

    def test_segments_are_proxied(self):
        updated = rewrite_media_playlist(self.source_url, MEDIA_PLAYLIST)
        segment_lines = _extract_urls(updated)
        self.assertEqual(
            [_decode_proxy_url(line) for line in segment_lines],
            [
                'https://origin.example.com/path/seg1.ts',
                'https://origin.example.com/path/sub/seg2.ts',
                'https://cdn.example.com/seg3.ts',
            ],
        )

    def test_key_and_map_uris_are_proxied(self):
        lines = rewrite_media_playlist(self.source_url, MEDIA_PLAYLIST).splitlines()

        key_line = next(line for line in lines if line.startswith('#EXT-X-KEY'))
        self.assertTrue(key_line.startswith('#EXT-X-KEY:METHOD=AES-128,URI="/proxy/'))
        self.assertTrue(key_line.endswith(',IV=0xabcdef'))
        key_uri = key_line.split('URI="', 1)[1].split('"', 1)[0]
        self.assertEqual(_decode_proxy_url(key_uri), 'https://origin.example.com/path/keys/key1.key')

        map_line = next(line for line in lines if line.startswith('#EXT-X-MAP'))
        map_uri = map_line.split('URI="', 1)[1].split('"', 1)[0]
        self.assertEqual(_decode_proxy_url(map_uri), 'https://origin.example.com/path/init.mp4')

    def test_discontinuity_filtered_by_default(self):
        updated = rewrite_media_playlist(self.source_url, MEDIA_PLAYLIST)
        self.assertNotIn('#EXT-X-DISCONTINUITY', updated.splitlines())

    def test_discontinuity_kept_when_filter_disabled(self):
        updated = rewrite_media_playlist(self.source_url, MEDIA_PLAYLIST, filter_discontinuity=False)
        self.assertEqual(updated.splitlines().count('#EXT-X-DISCONTINUITY'), 1)

    def test_line_structure_preserved(self):
        original_lines = MEDIA_PLAYLIST.split('\n')
        updated_lines = rewrite_media_playlist(self.source_url, MEDIA_PLAYLIST).split('\n')
        # One interior blank line and one discontinuity marker are dropped
        self.assertEqual(len(updated_lines), len(original_lines) - 2)
        for original, updated in zip(
            [line for line in original_lines if line and line != '#EXT-X-DISCONTINUITY'],
            updated_lines,
        ):
            if original.startswith('#EXTINF') or original.startswith('#EXT-X-VERSION'):
                self.assertEqual(original, updated)

    def test_every_content_line_is_proxy_path(self):
        updated = rewrite_media_playlist(self.source_url, MEDIA_PLAYLIST)
        for line in _extract_urls(updated):
            self.assertTrue(line.startswith('/proxy/'), line)

    def test_trailing_newline_preserved(self):
        self.assertTrue(rewrite_media_playlist(self.source_url, MEDIA_PLAYLIST).endswith('#EXT-X-ENDLIST\n'))
        self.assertTrue(
            rewrite_media_playlist(self.source_url, '#EXTM3U\n#EXTINF:10,\na.ts').endswith('a.ts')
        )

    def test_crlf_lines(self):
        updated = rewrite_media_playlist(self.source_url, '#EXTM3U\r\n#EXTINF:10,\r\nseg1.ts\r\n')
        self.assertEqual(
            updated.split('\n'),
            ['#EXTM3U', '#EXTINF:10,', '/proxy/https%3A%2F%2Forigin.example.com%2Fpath%2Fseg1.ts', ''],
        )


if __name__ == '__main__':
    unittest.main()
