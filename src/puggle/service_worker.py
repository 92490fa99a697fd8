"""
Generation of a precaching service worker for the built site.
"""
from __future__ import annotations

import hashlib
import typing as t
from pathlib import Path

import rich.markup

from .config import SERVICE_WORKER_OPTIONS, ServiceWorkerOptions, merge_options
from .paths import expand_braces, glob_to_regex
from .pretty_utils import print_with_style
from .simple import write_if_changed


DEFAULT_CACHE_ID = 'puggle-web-starter'


def file_hash(path: Path):
    return hashlib.md5(path.read_bytes()).hexdigest()


def _resolve(options: ServiceWorkerOptions | None):
    return t.cast(ServiceWorkerOptions, merge_options(SERVICE_WORKER_OPTIONS, options))


def _to_url(rel: str, options: ServiceWorkerOptions):
    prefix = options['strip_prefix']
    if prefix and rel.startswith(prefix):
        rel = rel[len(prefix):]
    return options['replace_prefix'] + rel


def find_precache_files(root: Path, options: ServiceWorkerOptions | None = None) -> list[Path]:
    """
    Every file below @root matched by the static file globs, except the
    service worker itself, in sorted order. Size limits are not applied.
    """
    opts = _resolve(options)
    regexes = [
        glob_to_regex(expanded)
        for pattern in opts['static_file_globs']
        for expanded in expand_braces(pattern)
    ]
    found = []
    for path in sorted(root.rglob('*')):
        if not path.is_file():
            continue
        rel = path.relative_to(root).as_posix()
        if rel == opts['filename']:
            continue
        if any(r.match(rel) for r in regexes):
            found.append(path)
    return found


def _collect(root: Path, opts: ServiceWorkerOptions):
    cap = opts['maximum_file_size_to_cache_in_bytes']
    for path in find_precache_files(root, opts):
        rel = path.relative_to(root).as_posix()
        size = path.stat().st_size
        if size > cap:
            print_with_style(
                f'Skipping {rich.markup.escape(rel)} ({size} bytes), larger than the {cap} byte precache limit',
                style='yellow',
            )
            continue
        if opts['verbose']:
            print_with_style(f'Caching static resource {rich.markup.escape(repr(rel))} ({size} B)', style='dim')
        yield path, _to_url(rel, opts), file_hash(path)


def build_precache_manifest(root: Path, options: ServiceWorkerOptions | None = None):
    """
    Build the precaching manifest for the site in @root: sorted `(url, md5)`
    pairs for every file matched by the static file globs. Files above the
    size cap are left out with a warning.
    """
    return sorted((url, digest) for _path, url, digest in _collect(root, _resolve(options)))


def render_service_worker(manifest: list[tuple[str, str]], options: ServiceWorkerOptions | None = None):
    """
    Render the service worker script for @manifest.
    """
    from jinja2 import Environment, PackageLoader

    opts = _resolve(options)
    env = Environment(
        loader=PackageLoader('puggle', 'templates'),
        autoescape=False,
        keep_trailing_newline=True,
    )
    template = env.get_template('service-worker.js.jinja')
    return template.render(
        manifest=[list(entry) for entry in manifest],
        cache_id=opts.get('cache_id') or DEFAULT_CACHE_ID,
        import_scripts=opts['import_scripts'],
        handle_fetch=opts['handle_fetch'],
        directory_index=opts['directory_index'],
        ignore_url_parameters_matching=opts['ignore_url_parameters_matching'],
        verbose=opts['verbose'],
    )


def write_service_worker(root: Path, options: ServiceWorkerOptions | None = None):
    """
    Write the service worker for the site in @root.

    :return: The path of the service worker and the files it precaches.
    """
    opts = _resolve(options)
    collected = list(_collect(root, opts))
    manifest = sorted((url, digest) for _path, url, digest in collected)
    target = root / opts['filename']
    write_if_changed(target, render_service_worker(manifest, opts))

    sources = [path for path, _url, _digest in collected]
    total = sum(p.stat().st_size for p in sources)
    print_with_style(f'Total precache size is about {total} bytes for {len(manifest)} resources.')
    return target, sources
