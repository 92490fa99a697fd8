"""
PageSpeed Insights reports for the published site.
"""
from __future__ import annotations

import typing as t

from .config import PAGESPEED_OPTIONS, PageSpeedOptions, merge_options
from .pretty_utils import print_with_style


API_URL = 'https://www.googleapis.com/pagespeedonline/v5/runPagespeed'
TIMEOUT = 120
KEY_AUDITS = (
    'first-contentful-paint',
    'largest-contentful-paint',
    'total-blocking-time',
    'cumulative-layout-shift',
    'speed-index',
)


def fetch_insights(url: str,
                   strategy: str = 'mobile',
                   key: str | None = None) -> dict[str, t.Any]:
    """
    Run PageSpeed Insights for @url. Without @key the free, rate limited tier
    is used.
    """
    import requests

    params = {'url': url, 'strategy': strategy, 'category': 'performance'}
    if key:
        params['key'] = key
    response = requests.get(API_URL, params=params, timeout=TIMEOUT)
    response.raise_for_status()
    return response.json()


def score_style(score: float):
    if score >= 90:
        return 'green'
    if score >= 50:
        return 'yellow'
    return 'red'


def report_insights(data: dict[str, t.Any]):
    """
    Print the performance score and key metrics of a PageSpeed result.
    Returns the score, out of 100.
    """
    lighthouse = data['lighthouseResult']
    score = round(lighthouse['categories']['performance']['score'] * 100)
    print_with_style(f'URL:      {data.get("id", lighthouse.get("finalUrl", ""))}')
    print_with_style(f'Strategy: {lighthouse.get("configSettings", {}).get("formFactor", "")}')
    print_with_style(f'Performance: {score}', style=score_style(score))
    audits = lighthouse.get('audits', {})
    for audit_id in KEY_AUDITS:
        if audit := audits.get(audit_id):
            print_with_style(f'  {audit["title"]}: {audit.get("displayValue", "")}')
    return score


def run_pagespeed(options: PageSpeedOptions | None = None, fallback_url: str | None = None):
    """
    Fetch and report insights for the configured URL, or @fallback_url (the
    site URL from `siteinfo.json`).
    """
    opts = t.cast(PageSpeedOptions, merge_options(PAGESPEED_OPTIONS, options))
    url = opts['url'] or fallback_url
    if not url:
        raise ValueError('No URL configured for PageSpeed Insights; set pagespeed.url or the siteinfo url')
    return report_insights(fetch_insights(url, opts['strategy'], opts['key']))
