# src/cadgis/sources/arcgis.py
"""
ArcGIS Online feature service walker.

Authenticates against the portal, browses the user's folders and Feature
Service items and queries service sub-layers page by page.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

import requests
from loguru import logger

from cadgis.config.models import ArcGISConfig
from cadgis.core.exceptions import QueryError, SourceConnectionError
from cadgis.core.feature import FeatureRecord
from cadgis.core.geometry import from_esri_json
from cadgis.sources.base import FeatureBatch, FeatureSource

FEATURE_SERVICE_TYPE = "feature service"

# Legacy ESRI codes for Web Mercator
ESRI_WKID_ALIASES = {102100: 3857, 102113: 3857}


@dataclass
class Folder:
    id: str
    title: str


@dataclass
class ServiceItem:
    id: str
    title: str
    type: str = "Feature Service"


@dataclass
class SubLayer:
    id: int
    name: Optional[str] = None
    geometry_type: Optional[str] = None


@dataclass
class ServiceInfo:
    id: str
    title: str
    url: Optional[str]
    layers: List[SubLayer] = field(default_factory=list)

    def layer_name(self, sublayer: SubLayer) -> str:
        """Drawing layer name of a sub-layer (its own name, else ``{title}_{id}``)."""
        return sublayer.name or f"{self.title}_{sublayer.id}"


class ArcGISClient:
    """Thin REST client for the ArcGIS Online sharing API."""

    def __init__(self, config: Optional[ArcGISConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or ArcGISConfig()
        self.session = session or requests.Session()
        self.token: Optional[str] = None
        self._username: Optional[str] = None

    def __repr__(self):
        state = "authenticated" if self.token else "anonymous"
        return f"<ArcGISClient {self.config.portal_url} {state}>"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _request(self, method: str, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Send a request and decode the JSON body.

        Transport failures are connection errors, an ``error`` object in the
        body is a query error.
        """
        params = dict(params)
        params.setdefault("f", "json")
        if self.token:
            params.setdefault("token", self.token)

        request_args = {"timeout": self.config.request_timeout}
        if method == "POST":
            request_args["data"] = params
        else:
            request_args["params"] = params

        try:
            response = self.session.request(method, url, **request_args)
            response.raise_for_status()
        except requests.RequestException as e:
            raise SourceConnectionError(f"Request to {url} failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise QueryError(f"Invalid JSON from {url}: {e}") from e

        if isinstance(body, dict) and body.get("error"):
            error = body["error"]
            details = "; ".join(error.get("details") or [])
            raise QueryError(
                f"{error.get('message', 'Unknown error')} (code {error.get('code')})"
                + (f": {details}" if details else "")
            )
        return body

    def _get(self, url: str, **params) -> Dict[str, Any]:
        return self._request("GET", url, params)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def login(self, username: Optional[str] = None, password: Optional[str] = None) -> str:
        """
        Generate a portal token.

        Args:
            username: Portal user (defaults to configuration)
            password: Portal password (defaults to configuration)

        Returns:
            The token

        Raises:
            SourceConnectionError: If no token could be obtained
        """
        username = username or self.config.username
        password = password or self.config.password
        if not username or not password:
            raise SourceConnectionError("ArcGIS username and password are required")

        logger.info(f"Requesting ArcGIS token for {username}")
        try:
            body = self._request(
                "POST",
                self.config.token_url,
                {
                    "username": username,
                    "password": password,
                    "referer": self.config.referer,
                    "expiration": str(self.config.token_expiration),
                },
            )
        except QueryError as e:
            raise SourceConnectionError(f"Login failed: {e}") from e

        token = body.get("token")
        if not token:
            raise SourceConnectionError("Login failed: no token returned")

        self.token = token
        self._username = None
        logger.success(f"Logged in to ArcGIS Online as {username}")
        return token

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def _require_token(self) -> None:
        if not self.token:
            raise SourceConnectionError("Not logged in to ArcGIS Online")

    # ------------------------------------------------------------------
    # Browsing
    # ------------------------------------------------------------------

    def current_username(self) -> str:
        self._require_token()
        if self._username is None:
            body = self._get(f"{self.config.portal_url}/community/self")
            self._username = body.get("username")
            if not self._username:
                raise SourceConnectionError("Portal did not return the current user")
        return self._username

    def list_folders(self) -> List[Folder]:
        """The user's content folders, with the root folder first."""
        username = self.current_username()
        body = self._get(f"{self.config.portal_url}/content/users/{username}")
        folders = [Folder(id="", title="Root")]
        folders.extend(Folder(id=f.get("id", ""), title=f.get("title", "")) for f in body.get("folders") or [])
        return folders

    def list_feature_services(self, folder_id: str = "") -> List[ServiceItem]:
        username = self.current_username()
        url = f"{self.config.portal_url}/content/users/{username}"
        if folder_id:
            url = f"{url}/{folder_id}"
        body = self._get(url)
        return [
            ServiceItem(id=item.get("id", ""), title=item.get("title", ""), type=item.get("type", ""))
            for item in body.get("items") or []
            if (item.get("type") or "").lower() == FEATURE_SERVICE_TYPE
        ]

    def get_service_info(self, item_id: str) -> ServiceInfo:
        """Item metadata plus the sub-layers of its service."""
        self._require_token()
        item = self._get(f"{self.config.portal_url}/content/items/{item_id}")
        info = ServiceInfo(id=item_id, title=item.get("title") or item_id, url=item.get("url"))
        if info.url:
            service = self._get(info.url)
            info.layers = [
                SubLayer(id=int(l["id"]), name=l.get("name"), geometry_type=l.get("geometryType"))
                for l in service.get("layers") or []
            ]
        return info

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def iter_query_pages(
        self, service_url: str, layer_id: int, out_sr: Optional[int] = None, where: str = "1=1"
    ) -> Iterator[Dict[str, Any]]:
        """Yield raw query pages until the server stops reporting more rows."""
        url = f"{service_url.rstrip('/')}/{layer_id}/query"
        offset = 0
        while True:
            page = self._get(
                url,
                where=where,
                outFields="*",
                returnGeometry="true",
                outSR=out_sr or self.config.source_epsg,
                resultOffset=offset,
                resultRecordCount=self.config.page_size,
            )
            features = page.get("features") or []
            yield page
            if not page.get("exceededTransferLimit") or not features:
                break
            offset += len(features)
            logger.debug(f"Fetching next page of {url} at offset {offset}")


class ArcGISFeatureSource(FeatureSource):
    """Feature source over one ArcGIS service sub-layer."""

    def __init__(self, client: ArcGISClient, out_sr: Optional[int] = None):
        self.client = client
        self.out_sr = out_sr or client.config.source_epsg

    def fetch(
        self,
        service_url: str,
        layer_id: int,
        layer_name: Optional[str] = None,
        declared_type: Optional[str] = None,
    ) -> FeatureBatch:
        """
        Fetch every feature of a sub-layer.

        Args:
            service_url: Feature service URL
            layer_id: Sub-layer id
            layer_name: Name of the batch (defaults to ``layer_{id}``)
            declared_type: Declared geometry type (``esriGeometryPoint`` ...)

        Returns:
            FeatureBatch in the CRS reported by the service
        """
        batch = FeatureBatch(
            layer_name=layer_name or f"layer_{layer_id}",
            source_epsg=self.out_sr,
            declared_type=declared_type,
        )

        for page in self.client.iter_query_pages(service_url, layer_id, out_sr=self.out_sr):
            if not batch.declared_type and page.get("geometryType"):
                batch.declared_type = page["geometryType"]
            spatial_reference = page.get("spatialReference") or {}
            wkid = spatial_reference.get("latestWkid") or spatial_reference.get("wkid")
            if wkid:
                batch.source_epsg = ESRI_WKID_ALIASES.get(int(wkid), int(wkid))
            for raw in page.get("features") or []:
                batch.features.append(
                    FeatureRecord.from_raw(raw.get("attributes") or {}, from_esri_json(raw.get("geometry")))
                )

        logger.info(f"Fetched {batch.summary()}")
        return batch

    def fetch_service(self, info: ServiceInfo) -> Iterator[FeatureBatch]:
        """Fetch each sub-layer of a service in turn, skipping empty ones."""
        if not info.url:
            logger.warning(f"Service {info.title} has no URL")
            return
        for sublayer in info.layers:
            batch = self.fetch(
                info.url,
                sublayer.id,
                layer_name=info.layer_name(sublayer),
                declared_type=sublayer.geometry_type,
            )
            if not batch:
                logger.info(f"No features in {batch.layer_name}")
                continue
            yield batch
