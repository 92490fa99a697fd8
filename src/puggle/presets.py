"""
The starter task set: everything needed to build a site from an `app/` tree
with Sass styles, Jinja pages with JSON data, responsive images, a favicon,
bundled scripts and a precaching service worker.
"""
from __future__ import annotations

import typing as t

from .config import SiteConfig, fingerprint, load_siteinfo, resolve_site
from .core import Rule
from .favicon import FaviconStep, favicon_markup_calc
from .html import HTMLMinifierStep, JinjaPageStep, UserefStep
from .images import ImageOptimizeStep, ResponsiveImageStep, variant_path_calcs
from .include import RequestsFetchStep
from .paths import GlobMatcher, OutputDirPathCalc, REMatcher, WorkingDirPathCalc, drop_suffix, strip_prefix
from .scripts import ESLintStep, JSMinifierStep, ResourcePackerStep
from .simple import DirectCopyStep
from .styles import CSSMinifierStep, SassStep
from .tasks import Task, TaskRegistry

if t.TYPE_CHECKING:
    from .build import Build


def site_parameters(site: SiteConfig | None = None):
    """
    Custodian parameters for @site, so configuration changes invalidate
    previous builds.
    """
    return {'site': fingerprint(resolve_site(site))}


def read_siteinfo(build: Build, site: SiteConfig) -> dict[str, t.Any]:
    path = build['input_dir'] / site['siteinfo']
    return load_siteinfo(path) if path.exists() else {}


def style_rules(site: SiteConfig):
    return [
        # Partials are only compiled through the files importing them.
        Rule(GlobMatcher('styles/**/_*.scss'), None),
        Rule(
            GlobMatcher('styles/**/*.scss'),
            [WorkingDirPathCalc('.css'), None],
            SassStep(precision=site['sass_precision'], source_maps=site['source_maps']),
        ),
        Rule(
            GlobMatcher('styles/**/*.css') | GlobMatcher('styles/**/*.css', 'working_dir'),
            OutputDirPathCalc(),
            CSSMinifierStep(browsers_list=site['browsers']),
        ),
    ]


def script_rules():
    return [
        Rule(
            GlobMatcher('scripts/**/*.bundle'),
            [WorkingDirPathCalc(transform=drop_suffix()), None],
            ResourcePackerStep(),
        ),
        Rule(
            GlobMatcher('scripts/**/*.js', 'working_dir'),
            OutputDirPathCalc(),
            JSMinifierStep(),
        ),
    ]


def lint_rules():
    return [
        Rule(GlobMatcher('scripts/**/*.js'), [], ESLintStep()),
    ]


def image_rules(site: SiteConfig):
    options = site['responsive_options']
    variants = site['responsive_variants']
    marker = options['skip_marker']
    quality = options['quality']

    rules = [
        Rule(
            GlobMatcher([*options['patterns'], f'!**/*{marker}*']),
            [*variant_path_calcs(variants), None],
            ResponsiveImageStep(variants, options),
        ),
        Rule(
            GlobMatcher(f'images/**/*{marker}*'),
            [OutputDirPathCalc(), None],
            ImageOptimizeStep(quality),
        ),
    ]
    if options['pass_through_unused'] or options['error_on_unused_image']:
        rules.append(Rule(
            GlobMatcher('images/**'),
            OutputDirPathCalc(),
            ImageOptimizeStep(quality, error_on_unused_image=options['error_on_unused_image']),
        ))
    return rules


def favicon_rules(site: SiteConfig):
    options = site['favicon_options']
    return [
        Rule(
            GlobMatcher(options['master_picture']),
            favicon_markup_calc(options),
            FaviconStep(options, site['siteinfo']),
        ),
    ]


def html_rules(site: SiteConfig):
    markup_file = site['favicon_options']['markup_file'] if site['favicon'] else None
    return [
        Rule(
            GlobMatcher(['**/*.jinja', '!root/**', '!templates/**']),
            [WorkingDirPathCalc('.raw.html'), None],
            JinjaPageStep(site['siteinfo'], git_dates=site['git_dates']),
        ),
        Rule(
            REMatcher(r'.*(?P<ext>\.raw\.html)\Z', parent_dir='working_dir'),
            [WorkingDirPathCalc('.html'), None],
            UserefStep(markup_file),
        ),
        Rule(
            GlobMatcher('**/*.html', 'working_dir'),
            OutputDirPathCalc(),
            HTMLMinifierStep(site['htmlmin_options']),
        ),
    ]


def copy_rules():
    return [
        Rule(
            GlobMatcher('root/**', dot=True),
            OutputDirPathCalc(transform=strip_prefix('root')),
            DirectCopyStep(),
        ),
    ]


def sw_script_rules():
    return [
        Rule(GlobMatcher('scripts/sw/**/*.js'), OutputDirPathCalc(), DirectCopyStep()),
        Rule(
            REMatcher(r'scripts/sw/.*(?P<ext>\.fetch\.toml)\Z', parent_dir='input_dir'),
            OutputDirPathCalc('.js'),
            RequestsFetchStep(),
        ),
    ]


def starter_tasks(site: SiteConfig | None = None, registry: TaskRegistry | None = None):
    """
    Register the starter tasks for @site on @registry, or on a new registry,
    and return it.

    `production` (and `default`) cleans, then builds styles and the favicon,
    then pages, scripts, images and root files in parallel, and finally the
    service worker over the finished output. `development` skips the service
    worker; `serve` builds for development and then serves the result with
    live reload.
    """
    site = resolve_site(site)
    registry = registry or TaskRegistry()

    @registry.task(description='Clean output directory and cache')
    def clean(build: Build):
        build.clean(force='clean' in build.targets)

    if site['lint']:
        lint = registry.pipeline('lint', lint_rules(), description='Lint JavaScript files')
        lint.produces_files = False
    registry.pipeline('styles', style_rules(site), description='Compile, prefix and minify stylesheets')
    registry.pipeline('scripts', script_rules(), description='Concatenate and minify scripts')
    registry.pipeline('images', image_rules(site), description='Resize and optimize images')
    if site['favicon']:
        registry.pipeline('favicon', favicon_rules(site), description='Generate favicons and their markup')
    registry.pipeline('html', html_rules(site), description='Render pages, rewrite asset blocks and minify',
                      show_files=True)
    registry.pipeline('copy', copy_rules(), description='Copy unprocessed files from root', show_files=True)
    registry.pipeline('copy-sw-scripts', sw_script_rules(),
                      description='Copy the scripts the service worker imports')

    @registry.task(deps=['copy-sw-scripts'], produces_files=True,
                   description='Generate a service worker precaching the site')
    def generate_service_worker(build: Build):
        from .service_worker import write_service_worker

        options = dict(site['service_worker'])
        options.setdefault('cache_id', read_siteinfo(build, site).get('name'))
        target, sources = write_service_worker(build['output_dir'], options)
        build.custodian.add_step(sources, [target], 'Regenerating precache manifest')
        return target

    first_stage = ['styles', 'favicon'] if site['favicon'] else ['styles']
    second_stage = ['lint'] if site['lint'] else []
    second_stage += ['html', 'scripts', 'images', 'copy']
    registry.sequence('development', [first_stage, second_stage], deps=['clean'],
                      description='Build development site (no service worker)')
    registry.sequence('production', [first_stage, second_stage, 'generate-service-worker'], deps=['clean'],
                      description='Build production site')

    @registry.task(deps=['development'], live=True, description='Serve the site and rebuild on changes')
    def serve(build: Build):
        from .server import serve_build
        serve_build(build, site)

    @registry.task(description='Get PageSpeed Insights for the public site')
    def pagespeed(build: Build):
        from .pagespeed import run_pagespeed
        run_pagespeed(site['pagespeed'], read_siteinfo(build, site).get('url'))

    registry.add(Task('default', deps=['production'], description='Build production site'))
    return registry
