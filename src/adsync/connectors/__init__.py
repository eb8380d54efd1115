from adsync.connectors.base import BaseConnector, ConnectorContext
from adsync.connectors.google_ads import GoogleAdsConnector
from adsync.connectors.meta_adsets import MetaAdsetConnector
from adsync.connectors.meta_ads import MetaAdsConnector
from adsync.connectors.naver_searchad import NaverSearchAdConnector

__all__ = [
    "BaseConnector",
    "ConnectorContext",
    "NaverSearchAdConnector",
    "MetaAdsConnector",
    "MetaAdsetConnector",
    "GoogleAdsConnector",
]
