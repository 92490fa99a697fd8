"""
Steps to add files from network resources into a Puggle build.
"""
from __future__ import annotations

import sys
from pathlib import Path

from .core import Context
from .custody import CustodyEntry
from .dependencies import PipDependency
from .simple import BaseStandardStep


class RequestsFetchStep(BaseStandardStep):
    """
    A step using requests to fetch a resource from a URL in a TOML config
    file into the build. The config holds a `url` key; any other keys are
    passed to `requests.get()`. Resources served with an ETag are only
    downloaded again when the server reports a change.
    """
    chunk_size = 8192
    timeout = 300

    @classmethod
    def get_dependencies(cls):
        deps = {
            PipDependency('requests'),
        }
        if sys.version_info < (3, 11):
            deps.add(PipDependency('tomli'))
        return deps

    def bind(self, context: Context):
        super().bind(context)
        @context.custodian.register_checker('requests', override=False)
        def requests_resource_stale(entry: CustodyEntry):
            import requests
            if not entry.meta.get('etag'):
                return False
            response = requests.head(
                entry.key,
                allow_redirects=True,
                headers={'If-None-Match': entry['etag']},
                timeout=self.timeout
            )
            return response.status_code == 304

    def load_config(self, path: Path):
        if sys.version_info < (3, 11):
            import tomli as tomllib
        else:
            import tomllib

        with path.open('rb') as file:
            return tomllib.load(file)

    def __call__(self, path: Path, output_paths: list[Path]):
        if not output_paths:
            return
        self.ensure_output_dirs(output_paths)

        import requests

        config = self.load_config(path)
        url: str = config.pop('url')
        config.setdefault('stream', True)
        config.setdefault('timeout', self.timeout)

        response = requests.get(url, **config)
        response.raise_for_status()
        with output_paths[0].open('wb') as file:
            for chunk in response.iter_content(self.chunk_size):
                file.write(chunk)
        self.duplicate_output_paths(output_paths)

        centry = CustodyEntry('requests', url, {'etag': response.headers.get('ETag')})
        return [path, centry], output_paths
