"""
Configuration records for the starter pipelines and their defaults.
"""
from __future__ import annotations

import copy
import hashlib
import json
import typing as t
from pathlib import Path


class MissingSidecarError(FileNotFoundError):
    """
    Raised when a JSON data file a page or the site depends on is missing.
    """
    def __init__(self, path: Path, needed_by: Path | None = None):
        self.path = path
        self.needed_by = needed_by
        msg = f'Missing JSON data file {path}'
        if needed_by:
            msg += f' (needed by {needed_by})'
        super().__init__(msg)


class ImageVariant(t.TypedDict, total=False):
    """
    One responsive rendition of an image. Omitting @width keeps the original
    size; setting both @width and @height with @crop cuts a centred box.
    """
    suffix: str
    width: int
    height: int
    crop: bool
    ext: str


class ResponsiveOptions(t.TypedDict, total=False):
    patterns: list[str]
    skip_marker: str
    without_enlargement: bool
    error_on_enlargement: bool
    with_metadata: bool
    pass_through_unused: bool
    error_on_unused_image: bool
    quality: int


class FaviconOptions(t.TypedDict, total=False):
    master_picture: str
    icons_path: str
    markup_file: str
    app_name: str
    app_short_name: str
    app_description: str
    app_url: str
    start_url: str
    lang: str
    foreground_color: str
    background_color: str
    version: str
    version_param: str
    display: str
    orientation: str | None
    ios: bool
    ios_margin: float
    desktop_browser: bool
    windows: bool
    android: bool
    android_shadow: bool
    safari_pinned_tab: bool
    safari_threshold: float
    scaling_algorithm: str
    error_on_image_too_small: bool


class HTMLMinOptions(t.TypedDict, total=False):
    minify_css: bool
    minify_js: bool
    keep_comments: bool
    keep_closing_tags: bool
    keep_html_and_head_opening_tags: bool


class ServiceWorkerOptions(t.TypedDict, total=False):
    filename: str
    cache_id: str
    import_scripts: list[str]
    static_file_globs: list[str]
    strip_prefix: str
    replace_prefix: str
    handle_fetch: bool
    directory_index: str
    ignore_url_parameters_matching: list[str]
    maximum_file_size_to_cache_in_bytes: int
    verbose: bool


class ServerOptions(t.TypedDict, total=False):
    host: str
    port: int
    certfile: str | None
    keyfile: str | None
    live_reload: bool
    poll_interval: float


class PageSpeedOptions(t.TypedDict, total=False):
    url: str | None
    strategy: t.Literal['mobile', 'desktop']
    key: str | None


class SiteConfig(t.TypedDict, total=False):
    """
    Everything the starter task set needs to know about a site. Every key is
    optional; missing keys take their defaults from `DEFAULT_SITE`.
    """
    siteinfo: str
    lint: bool
    favicon: bool
    git_dates: bool
    browsers: list[str]
    sass_precision: int
    source_maps: bool
    responsive_variants: list[ImageVariant]
    responsive_options: ResponsiveOptions
    favicon_options: FaviconOptions
    htmlmin_options: HTMLMinOptions
    service_worker: ServiceWorkerOptions
    server: ServerOptions
    pagespeed: PageSpeedOptions
    watch: list[tuple[list[str], list[str]]]


RESPONSIVE_VARIANTS: list[ImageVariant] = [
    {'suffix': '-blur', 'width': 30},
    {'suffix': '-350px', 'width': 350},
    {'suffix': '-350px-thumb', 'width': 350, 'height': 350, 'crop': True},
    {'suffix': '-700px', 'width': 700},
    {'suffix': '-700px', 'width': 700, 'ext': '.webp'},
    {'suffix': '-1400px', 'width': 1400},
    {'suffix': '-1400px', 'width': 1400, 'ext': '.webp'},
    {'suffix': '-2800', 'width': 2800},
    {'suffix': '-2800px', 'width': 2800, 'ext': '.webp'},
    {'suffix': '-5600px', 'width': 5600},
    {'suffix': '-5600px', 'width': 5600, 'ext': '.webp'},
    {'suffix': '-original'},
]

RESPONSIVE_OPTIONS: ResponsiveOptions = {
    'patterns': ['images/**/*.{jpeg,jpg,png,webp}'],
    'skip_marker': '-noresize',
    'without_enlargement': True,
    'error_on_enlargement': False,
    'with_metadata': False,
    'pass_through_unused': True,
    'error_on_unused_image': False,
    'quality': 80,
}

FAVICON_OPTIONS: FaviconOptions = {
    'master_picture': 'favicon.png',
    'icons_path': '/',
    'markup_file': 'favicon.html',
    'app_description': '',
    'start_url': '/',
    'lang': 'en-US',
    'foreground_color': '#247cbf',
    'background_color': '#ffffff',
    # Change whenever the favicon changes, to bust browser caches.
    'version': 'e4fDD2So21',
    'version_param': 'v',
    'display': 'standalone',
    'orientation': None,
    'ios': True,
    'ios_margin': 0.35,
    'desktop_browser': True,
    'windows': True,
    'android': True,
    'android_shadow': False,
    'safari_pinned_tab': True,
    'safari_threshold': 71.09375,
    'scaling_algorithm': 'Lanczos',
    'error_on_image_too_small': False,
}

HTMLMIN_OPTIONS: HTMLMinOptions = {
    'minify_css': True,
    'minify_js': True,
    'keep_comments': False,
    'keep_closing_tags': True,
    'keep_html_and_head_opening_tags': True,
}

SERVICE_WORKER_OPTIONS: ServiceWorkerOptions = {
    'filename': 'service-worker.js',
    'import_scripts': [
        # sw-toolbox sets up the methods runtime-caching.js relies on.
        'scripts/sw/sw-toolbox.js',
        'scripts/sw/runtime-caching.js',
    ],
    'static_file_globs': [
        'images/**/*',
        'scripts/**/*.js',
        'styles/**/*.css',
        '**/*.{html,json}',
    ],
    'strip_prefix': '',
    'replace_prefix': '',
    'handle_fetch': True,
    'directory_index': 'index.html',
    'ignore_url_parameters_matching': [r'^utm_'],
    'maximum_file_size_to_cache_in_bytes': 2 * 1024 * 1024,
    'verbose': False,
}

SERVER_OPTIONS: ServerOptions = {
    'host': 'localhost',
    'port': 3000,
    'certfile': None,
    'keyfile': None,
    'live_reload': True,
    'poll_interval': 0.5,
}

PAGESPEED_OPTIONS: PageSpeedOptions = {
    'url': None,
    'strategy': 'mobile',
    'key': None,
}

WATCH: list[tuple[list[str], list[str]]] = [
    (['**/*.{jinja,json}'], ['html']),
    (['styles/**/*.{scss,css}'], ['styles']),
    (['scripts/**/*.js'], ['lint', 'scripts']),
    (['images/**'], ['images']),
    (['root/**'], ['copy']),
]

DEFAULT_SITE: SiteConfig = {
    'siteinfo': 'siteinfo.json',
    'lint': True,
    'favicon': True,
    'git_dates': False,
    'browsers': ['defaults'],
    'sass_precision': 10,
    'source_maps': True,
    'responsive_variants': RESPONSIVE_VARIANTS,
    'responsive_options': RESPONSIVE_OPTIONS,
    'favicon_options': FAVICON_OPTIONS,
    'htmlmin_options': HTMLMIN_OPTIONS,
    'service_worker': SERVICE_WORKER_OPTIONS,
    'server': SERVER_OPTIONS,
    'pagespeed': PAGESPEED_OPTIONS,
    'watch': WATCH,
}

_NESTED_KEYS = (
    'responsive_options', 'favicon_options', 'htmlmin_options',
    'service_worker', 'server', 'pagespeed',
)


def merge_options(defaults: t.Mapping[str, t.Any], overrides: t.Mapping[str, t.Any] | None):
    """
    Shallow-merge @overrides over a deep copy of @defaults.
    """
    merged = copy.deepcopy(dict(defaults))
    if overrides:
        merged.update(overrides)
    return merged


def resolve_site(site: SiteConfig | None = None) -> SiteConfig:
    """
    Fill in every missing key of @site from `DEFAULT_SITE`, merging nested
    option records key by key.
    """
    site = site or {}
    resolved = t.cast(SiteConfig, merge_options(DEFAULT_SITE, {
        k: v for k, v in site.items() if k not in _NESTED_KEYS
    }))
    for key in _NESTED_KEYS:
        resolved[key] = merge_options(DEFAULT_SITE[key], site.get(key))
    return resolved


def fingerprint(site: SiteConfig) -> str:
    """
    Stable digest of a site configuration, used to invalidate incremental
    builds when configuration changes.
    """
    data = json.dumps(site, sort_keys=True, default=str)
    return hashlib.sha1(data.encode('utf-8')).hexdigest()


def load_json(path: Path, needed_by: Path | None = None) -> dict[str, t.Any]:
    """
    Load a JSON object from @path, raising `MissingSidecarError` if there is
    no such file.
    """
    if not path.is_file():
        raise MissingSidecarError(path, needed_by)
    with path.open(encoding='utf-8') as file:
        return json.load(file)


def load_siteinfo(path: Path) -> dict[str, t.Any]:
    """
    Load the site-wide `siteinfo.json` record (name, url, color, ...).
    """
    return load_json(path)
