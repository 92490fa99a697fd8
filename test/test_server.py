import contextlib
import pathlib
import socket
import threading
import time

import pytest
import requests

from puggle.server import RELOAD_PATH, RELOAD_SCRIPT, ReloadState, ThreadedHTTPServer, inject_reload_script, main


def get_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(('localhost', 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


def wait_for_port(port: int, timeout: float = 5):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        with contextlib.suppress(OSError), socket.create_connection(('localhost', port), timeout=0.2):
            return
        time.sleep(0.05)
    raise TimeoutError(f'Nothing listening on port {port}')


@contextlib.contextmanager
def run_server(directories: list[pathlib.Path], port: int, live_reload: bool = False):
    server = ThreadedHTTPServer(('localhost', port), directories, live_reload=live_reload)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server
    finally:
        server.shutdown()
        server.server_close()
        thread.join()


@contextlib.contextmanager
def run_server_cli(directories: list[pathlib.Path], port: int):
    args = ['--port', str(port)]
    for directory in directories:
        args.extend(['--directory', str(directory)])
    thread = threading.Thread(target=main, args=(args,), daemon=True)
    thread.start()
    wait_for_port(port)
    yield None


@pytest.fixture(scope='module')
def site_dirs(tmp_path_factory: pytest.TempPathFactory):
    tmp_path = tmp_path_factory.mktemp('server')
    working = tmp_path / 'working'
    output = tmp_path / 'output'
    (working / 'styles').mkdir(parents=True)
    (output / 'styles').mkdir(parents=True)
    (output / 'blog').mkdir()
    (output / 'index.html').write_text('<html><body><p>built</p></body></html>')
    (output / 'blog' / 'index.html').write_text('<p>blog</p>')
    (output / 'styles' / 'main.css').write_text('a{color:red}')
    (working / 'styles' / 'main.css').write_text('a {\n  color: red;\n}\n')
    (output / 'data.unknownext').write_bytes(b'\0\1')
    (tmp_path / 'secret.txt').write_text('secret')
    (output / 'leak.txt').symlink_to(tmp_path / 'secret.txt')
    return [working, output]


@pytest.fixture(scope='module', params=[False, True])
def server(request, site_dirs: list[pathlib.Path]):
    port = get_port()
    runner = run_server if not request.param else run_server_cli
    with runner(site_dirs, port):
        yield port


def test_server(server: int):
    response = requests.get(f'http://localhost:{server}/')
    assert response.status_code == 200
    assert response.headers['content-type'] == 'text/html'
    assert response.text == '<html><body><p>built</p></body></html>'


def test_server_directory_index(server: int):
    response = requests.get(f'http://localhost:{server}/blog/')
    assert response.status_code == 200
    assert response.text == '<p>blog</p>'


def test_server_first_root_wins(server: int):
    response = requests.get(f'http://localhost:{server}/styles/main.css')
    assert response.status_code == 200
    assert response.headers['content-type'] == 'text/css'
    assert response.text == 'a {\n  color: red;\n}\n'


def test_server_default_mime_type(server: int):
    response = requests.get(f'http://localhost:{server}/data.unknownext')
    assert response.headers['content-type'] == 'application/octet-stream'
    assert response.content == b'\0\1'


def test_server_etag(server: int):
    response = requests.get(f'http://localhost:{server}/')
    assert response.status_code == 200
    assert response.headers['content-type'] == 'text/html'
    etag = response.headers['etag']
    new_response = requests.get(f'http://localhost:{server}/', headers={'If-None-Match': etag})
    assert new_response.status_code == 304


def test_server_stale_etag(server: int):
    response = requests.get(f'http://localhost:{server}/')
    assert response.status_code == 200
    assert response.headers['content-type'] == 'text/html'
    etag = response.headers['etag']
    new_response = requests.get(f'http://localhost:{server}/', headers={'If-None-Match': etag + '0'})
    assert new_response.status_code == 200


def test_server_404(server: int):
    response = requests.get(f'http://localhost:{server}/does_not_exist')
    assert response.status_code == 404


def test_server_symlink_escape(server: int):
    response = requests.get(f'http://localhost:{server}/leak.txt')
    assert response.status_code == 403


def test_server_reload_disabled(server: int):
    response = requests.get(f'http://localhost:{server}{RELOAD_PATH}')
    assert response.status_code == 404


def test_live_reload(site_dirs: list[pathlib.Path]):
    port = get_port()
    with run_server(site_dirs, port, live_reload=True) as httpd:
        page = requests.get(f'http://localhost:{port}/')
        assert RELOAD_SCRIPT in page.text
        assert page.text.endswith('</body></html>')
        assert int(page.headers['content-length']) == len(page.content)

        css = requests.get(f'http://localhost:{port}/styles/main.css')
        assert RELOAD_SCRIPT not in css.text

        assert requests.get(f'http://localhost:{port}{RELOAD_PATH}').json() == {'version': 0}

        result = {}

        def wait():
            result['data'] = requests.get(f'http://localhost:{port}{RELOAD_PATH}?since=0').json()

        waiter = threading.Thread(target=wait)
        waiter.start()
        time.sleep(0.2)
        assert 'data' not in result
        httpd.reload.bump()
        waiter.join(5)
        assert result['data'] == {'version': 1}


def test_live_reload_bad_version(site_dirs: list[pathlib.Path]):
    port = get_port()
    with run_server(site_dirs, port, live_reload=True):
        response = requests.get(f'http://localhost:{port}{RELOAD_PATH}?since=soon')
        assert response.status_code == 400
        assert requests.get(f'http://localhost:{port}{RELOAD_PATH}').json() == {'version': 0}


def test_reload_state_timeout():
    state = ReloadState()
    assert state.wait(0, timeout=0.05) == 0
    state.bump()
    assert state.wait(0, timeout=0.05) == 1


def test_inject_reload_script():
    assert inject_reload_script(b'<p>x</p></BODY>') == b'<p>x</p>' + RELOAD_SCRIPT.encode() + b'</BODY>'
    assert inject_reload_script(b'<p>x</p>') == b'<p>x</p>' + RELOAD_SCRIPT.encode()
