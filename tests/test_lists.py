import itertools
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from blocky import evt
from blocky.lists import ListCache, ListCacheType, process_line


@pytest.fixture
def serve():
    servers = []

    def start(respond):
        counter = itertools.count(1)
        lock = threading.Lock()

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self):
                with lock:
                    attempt = next(counter)
                status, body, delay = respond(attempt)
                time.sleep(delay)
                try:
                    self.send_response(status)
                    self.send_header("Content-Length", str(len(body)))
                    self.end_headers()
                    self.wfile.write(body)
                except OSError:
                    pass

            def log_message(self, *args):
                pass

        server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        server.daemon_threads = True
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return f"http://127.0.0.1:{server.server_address[1]}"

    yield start
    for server in servers:
        server.shutdown()
        server.server_close()


@pytest.fixture
def serve_text(serve):
    return lambda text: serve(lambda attempt: (200, text.encode(), 0))


@pytest.fixture
def make_cache():
    caches = []

    def make(groups, refresh_period=0, **kwargs):
        cache = ListCache(ListCacheType.BLACKLIST, groups, refresh_period, **kwargs)
        caches.append(cache)
        return cache

    yield make
    for cache in caches:
        cache.stop()


@pytest.fixture
def write_file(tmp_path):
    names = itertools.count()

    def write(text):
        path = tmp_path / f"list{next(names)}.txt"
        path.write_text(text)
        return str(path)

    return write


@pytest.fixture
def empty_file(write_file):
    return write_file("#empty file\n\n")


def test_query_with_empty_domain(make_cache, empty_file):
    sut = make_cache({"gr0": [empty_file]})
    assert sut.match("", ["gr0"]) is None


def test_empty_list_matches_nothing(make_cache, empty_file):
    sut = make_cache({"gr1": [empty_file]})
    assert sut.match("google.com", ["gr1"]) is None


def test_timeout_is_retried(make_cache, serve):
    url = serve(lambda attempt: (200, b"blocked1.com", 0.6 if attempt == 1 else 0))
    sut = make_cache({"gr1": [url]}, timeout=0.2, retry_delay=0)
    assert sut.match("blocked1.com", ["gr1"]) == "gr1"


def test_temporary_error_keeps_existing_entries(make_cache, serve, empty_file):
    url = serve(lambda attempt: (200, b"blocked1.com", 0 if attempt == 1 else 0.6))
    sut = make_cache({"gr1": [url, empty_file]}, timeout=0.2, retry_delay=0)
    assert sut.match("blocked1.com", ["gr1"]) == "gr1"

    sut.refresh()

    assert sut.match("blocked1.com", ["gr1"]) == "gr1"


def test_permanent_error_deletes_entries(make_cache, serve):
    url = serve(lambda attempt: (200, b"blocked1.com", 0) if attempt == 1 else (404, b"", 0))
    sut = make_cache({"gr1": [url]})
    assert sut.match("blocked1.com", ["gr1"]) == "gr1"

    sut.refresh()

    assert sut.match("blocked1.com", ["gr1"]) is None


def test_external_urls_match(make_cache, serve_text):
    server1 = serve_text("blocked1.com\nblocked1a.com\n192.168.178.55")
    server2 = serve_text("blocked2.com")
    server3 = serve_text("blocked3.com\nblocked1a.com")
    sut = make_cache({"gr1": [server1, server2], "gr2": [server3]})

    assert sut.match("blocked1.com", ["gr1", "gr2"]) == "gr1"
    assert sut.match("blocked1a.com", ["gr1", "gr2"]) == "gr1"
    assert sut.match("blocked1a.com", ["gr2"]) == "gr2"
    assert sut.match("blocked2.com", ["gr2"]) is None
    assert sut.match("192.168.178.55", ["gr1"]) == "gr1"


def test_no_groups_passed_matches_nothing(make_cache, serve_text):
    server1 = serve_text("blocked1.com\nblocked1a.com\n192.168.178.55")
    server2 = serve_text("blocked2.com")
    server3 = serve_text("blocked3.com\nblocked1a.com")
    sut = make_cache(
        {
            "gr1": [server1, server2],
            "gr2": [server3],
            "withDeadLink": ["http://127.0.0.1:1"],
        }
    )
    assert sut.match("blocked1.com", []) is None
    assert "  withDeadLink: 0 entries" in sut.configuration()


def test_update_fires_event_with_count(make_cache, serve_text):
    server1 = serve_text("blocked1.com\nblocked1a.com\n192.168.178.55")
    received = []
    evt.bus().subscribe_once(
        evt.BLOCKING_CACHE_GROUP_CHANGED,
        lambda list_type, group, count: received.append((list_type, group, count)),
    )

    sut = make_cache({"gr1": [server1]})

    assert sut.match("blocked1.com", []) is None
    assert received == [(ListCacheType.BLACKLIST, "gr1", 3)]
    assert str(received[0][0]) == "blacklist"


def test_multiple_groups_from_files(make_cache, write_file):
    file1 = write_file("blocked1.com\nblocked1a.com")
    file2 = write_file("blocked2.com")
    file3 = write_file("blocked3.com\nblocked1a.com")
    sut = make_cache({"gr1": [file1, file2], "gr2": ["file://" + file3]})

    assert sut.match("blocked1.com", ["gr1", "gr2"]) == "gr1"
    assert sut.match("blocked1a.com", ["gr1", "gr2"]) == "gr1"
    assert sut.match("blocked1a.com", ["gr2"]) == "gr2"


def test_inline_list_content(make_cache):
    sut = make_cache({"gr1": ["inlinedomain1.com\n#some comment\n#inlinedomain2.com"]})
    assert sut.match("inlinedomain1.com", ["gr1"]) == "gr1"
    assert sut.match("inlinedomain2.com", ["gr1"]) is None


def test_duplicates_counted_once(make_cache):
    sut = make_cache({"gr1": ["a.com\nb.com\n", "a.com\nc.com\n"]})
    assert "  gr1: 3 entries" in sut.configuration()


def test_configuration_with_refresh(make_cache, serve_text):
    server1 = serve_text("blocked1.com\nblocked1a.com\n192.168.178.55")
    server2 = serve_text("blocked2.com")
    sut = make_cache({"gr1": [server1, server2]})

    lines = sut.configuration()
    assert len(lines) == 8
    assert lines[0] == "refresh period: 240 minutes"
    assert lines[-1] == "  TOTAL: 4 entries"


def test_configuration_refresh_disabled(make_cache):
    sut = make_cache({"gr1": ["file1", "file2"]}, refresh_period=-1)
    assert "refresh: disabled" in sut.configuration()


@pytest.mark.parametrize(
    "line, expected",
    [
        ("# comment", ""),
        ("", ""),
        ("example.com", "example.com"),
        ("0.0.0.0 Example.COM", "example.com"),
        ("192.168.178.55", "192.168.178.55"),
        ("2001:0db8::0001", "2001:db8::1"),
        ("::ffff:10.0.0.1", "10.0.0.1"),
    ],
)
def test_process_line(line, expected):
    assert process_line(line) == expected