"""
Development HTTP server: serves the working and output directories with
ETags and live reload.
"""
from __future__ import annotations

import argparse
import hashlib
import http.server
import json
import mimetypes
import os
import pathlib
import re
import ssl
import threading
import typing
from urllib.parse import parse_qs, urlsplit

import rich.markup

from .pretty_utils import print_with_style

if typing.TYPE_CHECKING:
    from collections.abc import Sequence
    from socketserver import _AfInetAddress
    from .build import Build
    from .config import ServerOptions, SiteConfig


INDEX_FILE = 'index.html'
# Default used by nginx
DEFAULT_MIME_TYPE = 'application/octet-stream'
RELOAD_PATH = '/__puggle__/reload'
RELOAD_TIMEOUT = 25.0
RELOAD_SCRIPT = """<script>
(function () {
  var version = null;
  function poll() {
    fetch('%s' + (version === null ? '' : '?since=' + version))
      .then(function (response) { return response.json(); })
      .then(function (data) {
        if (version !== null && data.version !== version) {
          window.location.reload();
          return;
        }
        version = data.version;
        poll();
      })
      .catch(function () { setTimeout(poll, 2000); });
  }
  poll();
})();
</script>
""" % RELOAD_PATH
BODY_CLOSE = re.compile(rb'</body\s*>', re.IGNORECASE)


class ReloadState:
    """
    A version counter clients can wait on; bumping it tells every waiting
    page to reload.
    """
    def __init__(self):
        self.version = 0
        self._condition = threading.Condition()

    def bump(self):
        with self._condition:
            self.version += 1
            self._condition.notify_all()

    def wait(self, since: int, timeout: float = RELOAD_TIMEOUT):
        """
        Wait until the version differs from @since, or @timeout passes, and
        return the current version.
        """
        with self._condition:
            self._condition.wait_for(lambda: self.version != since, timeout)
            return self.version


def inject_reload_script(data: bytes):
    script = RELOAD_SCRIPT.encode('utf-8')
    if match := BODY_CLOSE.search(data):
        return data[:match.start()] + script + data[match.start():]
    return data + script


class ThreadedHTTPServer(http.server.ThreadingHTTPServer):
    """
    A simple HTTP server that handles each request in a separate thread.
    Requests are looked up in each of @roots in turn.
    """
    daemon_threads = True
    RequestHandlerClass: typing.Type[http.server.SimpleHTTPRequestHandler]

    def __init__(self,
                 server_address: _AfInetAddress,
                 roots: Sequence[str | pathlib.Path],
                 RequestHandlerClass: typing.Type[http.server.SimpleHTTPRequestHandler] | None = None,
                 live_reload: bool = False,
                 bind_and_activate: bool = True) -> None:
        super().__init__(server_address, RequestHandlerClass or Handler, bind_and_activate)
        self.roots = [pathlib.Path(r).resolve() for r in roots]
        self.reload = ReloadState() if live_reload else None

    def finish_request(self, request, client_address) -> None:
        self.RequestHandlerClass(request, client_address, self, directory=str(self.roots[0]))

    def enable_tls(self, certfile: str | pathlib.Path, keyfile: str | pathlib.Path | None = None):
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(certfile, keyfile)
        self.socket = context.wrap_socket(self.socket, server_side=True)


class Handler(http.server.SimpleHTTPRequestHandler):
    server: ThreadedHTTPServer

    def get_etag(self, file_path):
        """
        Generate an etag for a file based on its path and modification time.
        """
        mtime = os.path.getmtime(file_path)
        file_size = os.path.getsize(file_path)
        file_info = f"{file_path}-{file_size}-{mtime}"
        return hashlib.md5(file_info.encode('utf-8')).hexdigest()

    def locate(self):
        """
        Find the file for the request path in the first root that has it.
        Raises PermissionError for paths resolving outside their root.
        """
        for root in self.server.roots:
            self.directory = str(root)
            file_path = pathlib.Path(self.translate_path(self.path))
            if file_path.is_dir():
                file_path /= INDEX_FILE
            if not file_path.exists():
                continue
            # Double-check that we haven't escaped the directory.
            # self.translate_path() discards suspicious path components, but
            # symlinks can still point elsewhere.
            if not file_path.resolve().is_relative_to(root):
                raise PermissionError(file_path)
            if file_path.is_file():
                return file_path
        raise FileNotFoundError(self.path)

    def do_reload(self):
        state = self.server.reload
        if not state:
            return self.send_error(404, 'Live reload is disabled')
        query = parse_qs(urlsplit(self.path).query)
        if 'since' in query:
            try:
                since = int(query['since'][0])
            except ValueError:
                return self.send_error(400, 'Bad reload version')
            version = state.wait(since)
        else:
            version = state.version
        body = json.dumps({'version': version}).encode('utf-8')
        self.send_response(200)
        self.send_header('Content-type', 'application/json')
        self.send_header('Cache-Control', 'no-store')
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self):
        if urlsplit(self.path).path == RELOAD_PATH:
            return self.do_reload()
        try:
            file_path = self.locate()
            etag = self.get_etag(file_path)
            # Check if the client already has the file
            if 'If-None-Match' in self.headers and self.headers['If-None-Match'] == etag:
                self.send_response(304)
                self.end_headers()
                return

            # Get the file extension and set the MIME type accordingly
            mime_type, _enc = mimetypes.guess_type(file_path)
            mime_type = mime_type or DEFAULT_MIME_TYPE
            if mime_type == 'text/html' and self.server.reload:
                self.send_body(mime_type, etag, inject_reload_script(file_path.read_bytes()))
                return

            self.send_response(200)
            self.send_header('Content-type', mime_type)
            self.send_header('Content-Length', str(file_path.stat().st_size))
            self.send_header('ETag', etag)
            self.end_headers()
            # Serve the file in chunks to avoid reading the entire file
            # into memory
            with open(file_path, 'rb') as file:
                chunk_size = 8192
                while chunk := file.read(chunk_size):
                    self.wfile.write(chunk)
        except PermissionError:
            self.send_error(403, 'Forbidden')
        except FileNotFoundError:
            self.send_error(404, f'File Not Found: {self.path}')

    def send_body(self, mime_type: str, etag: str, body: bytes):
        self.send_response(200)
        self.send_header('Content-type', mime_type)
        self.send_header('Content-Length', str(len(body)))
        self.send_header('ETag', etag)
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args):  # pylint: disable=redefined-builtin
        if self.path.startswith(RELOAD_PATH):
            return
        print_with_style(f'{self.address_string()} - {rich.markup.escape(format % args)}',
                         file='stderr', style='dim')


def create_server(roots: Sequence[str | pathlib.Path], options: ServerOptions):
    """
    Create a server for @roots from a `ServerOptions` record, with TLS when
    a certificate is configured.
    """
    server = ThreadedHTTPServer(
        (options['host'], options['port']),
        roots,
        live_reload=options['live_reload'],
    )
    if options.get('certfile'):
        server.enable_tls(options['certfile'], options.get('keyfile'))
    return server


def server_url(server: ThreadedHTTPServer, options: ServerOptions):
    scheme = 'https' if options.get('certfile') else 'http'
    return f'{scheme}://{options["host"]}:{server.server_address[1]}'


def serve(port: int,
          roots: Sequence[str | pathlib.Path],
          host: str = 'localhost',
          certfile: str | None = None,
          keyfile: str | None = None):
    options: ServerOptions = {
        'host': host, 'port': port, 'certfile': certfile, 'keyfile': keyfile, 'live_reload': False,
    }
    with create_server(roots, options) as httpd:
        print_with_style(f'Serving at {server_url(httpd, options)}')
        httpd.serve_forever()


def serve_build(build: Build, site: SiteConfig):
    """
    Serve the working and output directories of @build, rebuilding and
    reloading pages as the input directory changes. Blocks until interrupted.
    """
    from .watch import Watcher

    options = site['server']
    build.save()
    server = create_server([build['working_dir'], build['output_dir']], options)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    print_with_style(f'Serving at {server_url(server, options)}', style='green')

    watcher = Watcher(
        build,
        site['watch'],
        options['poll_interval'],
        on_rebuild=server.reload.bump if server.reload else None,
    )
    try:
        watcher.run()
    except KeyboardInterrupt:
        print_with_style('Stopping server', style='yellow')
    finally:
        server.shutdown()
        server.server_close()
        thread.join()


def main(arguments: list[str] | None = None):
    parser = argparse.ArgumentParser()
    parser.add_argument('-p', '--port',
                        help='port to serve from',
                        type=int,
                        default=8080)
    parser.add_argument('-d', '--directory',
                        help='directory to serve; repeat to serve several, first match wins',
                        type=pathlib.Path,
                        action='append',
                        dest='directories')
    parser.add_argument('--cert',
                        help='certificate file for serving over HTTPS')
    parser.add_argument('--key',
                        help='private key file, if not included in the certificate file')
    args = parser.parse_args(arguments)
    serve(args.port, args.directories or [pathlib.Path('.')], certfile=args.cert, keyfile=args.key)


if __name__ == '__main__':
    main()
