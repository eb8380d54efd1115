from __future__ import annotations

from adsync.connectors.base import BaseConnector, ConnectorContext
from adsync.connectors.google_ads import GoogleAdsConnector
from adsync.connectors.meta_adsets import MetaAdsetConnector
from adsync.connectors.meta_ads import MetaAdsConnector
from adsync.connectors.naver_searchad import NaverSearchAdConnector
from adsync.store import Store


def build_connector(platform: str, ctx: ConnectorContext, store: Store) -> BaseConnector:
    if platform == "naver":
        return NaverSearchAdConnector(ctx, store)
    if platform == "meta":
        return MetaAdsConnector(ctx, store)
    if platform == "meta_adset":
        return MetaAdsetConnector(ctx, store)
    if platform == "google":
        return GoogleAdsConnector(ctx, store)

    raise ValueError(f"Unknown platform: {platform}")
