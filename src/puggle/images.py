"""
Steps for producing responsive image renditions and optimizing images with
Pillow.
"""
from __future__ import annotations

import shutil
import typing as t
from pathlib import Path

from .config import RESPONSIVE_OPTIONS, ImageVariant, ResponsiveOptions, merge_options
from .dependencies import PipDependency
from .paths import OutputDirPathCalc, add_suffix
from .simple import BaseStandardStep

if t.TYPE_CHECKING:
    from PIL.Image import Image


RESAMPLING_NAMES = {
    'lanczos': 'LANCZOS',
    'mitchell': 'BICUBIC',
    'cubic': 'BICUBIC',
    'bilinear': 'BILINEAR',
    'nearestneighbor': 'NEAREST',
    'box': 'BOX',
    'hamming': 'HAMMING',
}
RASTER_FORMATS = {'JPEG', 'PNG', 'GIF', 'WEBP'}


class ImageEnlargementError(ValueError):
    """
    Raised when a rendition would need a larger image than the source and
    enlargement errors are enabled.
    """
    def __init__(self, path: Path, variant: ImageVariant, size: tuple[int, int]):
        self.path = path
        self.variant = variant
        super().__init__(
            f'{path} ({size[0]}x{size[1]}) is too small for '
            f'{variant.get("width")}x{variant.get("height")} rendition {variant.get("suffix")!r}'
        )


class UnusedImageError(ValueError):
    """
    Raised for images that no responsive pattern handles, when such images
    are configured as errors.
    """


def get_resampling(name: str):
    from PIL import Image
    return getattr(Image.Resampling, RESAMPLING_NAMES[name.lower()])


def format_for(path: Path) -> str | None:
    """
    Pillow format name for the extension of @path.
    """
    from PIL import Image
    return Image.registered_extensions().get(path.suffix.lower())


def save_optimized(img: Image, path: Path, quality: int | str = 80, metadata: dict[str, t.Any] | None = None):
    """
    Save @img to @path in the format implied by its extension, with lossless
    optimizations (progressive JPEGs, optimized PNGs, interlaced GIFs).
    """
    fmt = format_for(path)
    params: dict[str, t.Any] = dict(metadata or {})
    if fmt == 'JPEG':
        if img.mode not in ('RGB', 'L', 'CMYK'):
            img = img.convert('RGB')
        params.update(optimize=True, progressive=True, quality=quality)
    elif fmt == 'PNG':
        params.update(optimize=True)
    elif fmt == 'WEBP':
        params.update(quality=quality, method=6)
    elif fmt == 'GIF':
        params.update(optimize=True, interlace=True)
    path.parent.mkdir(parents=True, exist_ok=True)
    img.save(path, fmt, **params)


def variant_path_calcs(variants: list[ImageVariant]):
    """
    One output PathCalc per variant, in variant order.
    """
    return [OutputDirPathCalc(v.get('ext'), transform=add_suffix(v.get('suffix', ''))) for v in variants]


class ResponsiveImageStep(BaseStandardStep):
    """
    Render every configured variant of an image. Output paths must line up
    with the variants, as produced by `variant_path_calcs()`.
    """
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('Pillow', check_name='PIL'),
        }

    def __init__(self,
                 variants: list[ImageVariant],
                 options: ResponsiveOptions | None = None,
                 scaling_algorithm: str = 'Lanczos'):
        self.variants = variants
        self.options = t.cast(ResponsiveOptions, merge_options(RESPONSIVE_OPTIONS, options))
        self.scaling_algorithm = scaling_algorithm

    def target_size(self, path: Path, img: Image, variant: ImageVariant):
        width = variant.get('width')
        height = variant.get('height')
        too_small = (width and width > img.width) or (height and height > img.height)
        if too_small:
            if self.options['error_on_enlargement']:
                raise ImageEnlargementError(path, variant, img.size)
            if self.options['without_enlargement']:
                width = width and min(width, img.width)
                height = height and min(height, img.height)
        return width, height

    def render_variant(self, path: Path, img: Image, variant: ImageVariant) -> Image:
        from PIL import ImageOps

        width, height = self.target_size(path, img, variant)
        if not width and not height:
            return img.copy()
        resample = get_resampling(self.scaling_algorithm)
        if width and height:
            if variant.get('crop'):
                return ImageOps.fit(img, (width, height), method=resample, centering=(0.5, 0.5))
            return img.resize((width, height), resample)
        if width:
            return img.resize((width, max(1, round(img.height * width / img.width))), resample)
        return img.resize((max(1, round(img.width * height / img.height)), height), resample)

    def __call__(self, path: Path, output_paths: list[Path]):
        from PIL import Image

        if len(output_paths) != len(self.variants):
            raise ValueError(
                f'{len(output_paths)} output paths given for {len(self.variants)} image variants'
            )
        with Image.open(path) as img:
            img.load()
            metadata = {}
            if self.options['with_metadata']:
                metadata = {k: img.info[k] for k in ('exif', 'icc_profile') if k in img.info}
            for variant, o_path in zip(self.variants, output_paths):
                rendition = self.render_variant(path, img, variant)
                save_optimized(rendition, o_path, self.options['quality'], metadata)


class ImageOptimizeStep(BaseStandardStep):
    """
    Pass an image through, re-encoding raster formats with lossless
    optimizations when that makes the file smaller. Other files, and
    animated images, are copied verbatim.
    """
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('Pillow', check_name='PIL'),
        }

    def __init__(self, quality: int = 80, error_on_unused_image: bool = False):
        self.quality = quality
        self.error_on_unused_image = error_on_unused_image

    def __call__(self, path: Path, output_paths: list[Path]):
        from PIL import Image, UnidentifiedImageError

        if self.error_on_unused_image:
            raise UnusedImageError(f'{path} is not handled by any responsive image pattern')

        self.ensure_output_dirs(output_paths)
        target = output_paths[0]
        if format_for(path) not in RASTER_FORMATS or format_for(target) not in RASTER_FORMATS:
            shutil.copy(path, target)
        else:
            try:
                with Image.open(path) as img:
                    if getattr(img, 'is_animated', False):
                        shutil.copy(path, target)
                    else:
                        img.load()
                        # 'keep' reuses the source JPEG quantization, avoiding a lossy re-encode.
                        quality = 'keep' if img.format == 'JPEG' else self.quality
                        save_optimized(img, target, quality)
            except UnidentifiedImageError:
                shutil.copy(path, target)
            if target.stat().st_size > path.stat().st_size:
                shutil.copy(path, target)
        self.duplicate_output_paths(output_paths)
