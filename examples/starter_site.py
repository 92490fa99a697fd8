from pathlib import Path

from puggle import ESLintStep, InputBuildSettings, SiteConfig


# Optional, and can be overridden with CLI arguments.
SETTINGS = InputBuildSettings(
    input_dir=Path(__file__).parent / 'starter_site',
    output_dir=Path('dist/starter_site'),
    working_dir=Path('.tmp/starter_site'),
)
# Every key is optional; see puggle.config.DEFAULT_SITE for the defaults.
# Add a favicon.png of at least 512x512 to starter_site/ to generate favicons.
SITE = SiteConfig(
    lint=ESLintStep.is_available(),
    browsers=['>0.5%', 'last 2 versions', 'not dead'],
    responsive_variants=[
        {'suffix': '-blur', 'width': 30},
        {'suffix': '-350px', 'width': 350},
        {'suffix': '-350px-thumb', 'width': 350, 'height': 350, 'crop': True},
        {'suffix': '-700px', 'width': 700},
        {'suffix': '-700px', 'width': 700, 'ext': '.webp'},
        {'suffix': '-original'},
    ],
    service_worker={
        'import_scripts': ['scripts/sw/runtime-caching.js'],
    },
    server={'port': 3000},
)
