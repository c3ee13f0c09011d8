"""
GeoPackage helpers used by the file-backed drawing surface.

Layers are written in chunks so that large imports give progress feedback.
"""

from pathlib import Path
from typing import List, Literal, Union

import fiona
import geopandas as gpd
from loguru import logger
from rich.console import Console
from rich.progress import (BarColumn, Progress, SpinnerColumn,
                           TaskProgressColumn, TextColumn, TimeElapsedColumn)

console = Console(stderr=True)

DEFAULT_CHUNK_SIZE = 1024


def list_gpkg_layers(path: Union[str, Path]) -> List[str]:
    """Layer names of a GeoPackage; empty when the file does not exist."""
    path = Path(path)
    if not path.exists():
        return []
    return list(fiona.listlayers(str(path)))


def read_gpkg_layer(path: Union[str, Path], layer: str) -> gpd.GeoDataFrame:
    return gpd.read_file(path, layer=layer)


def remove_gpkg_layer(path: Union[str, Path], layer: str) -> bool:
    """Drop a layer if present. Returns True when something was removed."""
    if layer not in list_gpkg_layers(path):
        return False
    fiona.remove(str(path), driver="GPKG", layer=layer)
    logger.debug(f"Removed layer {layer} from {path}")
    return True


def _create_chunks(gdf: gpd.GeoDataFrame, chunk_size: int) -> list[gpd.GeoDataFrame]:
    return [gdf.iloc[i : i + chunk_size].copy() for i in range(0, len(gdf), chunk_size)]


def write_gpkg_layer(
    gdf: gpd.GeoDataFrame,
    path: Union[str, Path],
    layer: str,
    mode: Literal["w", "a"] = "w",
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    show_progress: bool = False,
) -> Path:
    """
    Write a GeoDataFrame to one GeoPackage layer.

    With ``mode="w"`` the layer is replaced, other layers of the file are
    kept. An empty frame removes the layer instead (GeoPackage layers need at
    least a schema, which an empty frame cannot provide).

    Args:
        gdf: Features to write
        path: GeoPackage file path
        layer: Layer name
        mode: 'w' replaces the layer, 'a' appends to it
        chunk_size: Number of features per write call
        show_progress: Show a rich progress bar

    Returns:
        Path to written file
    """
    path = Path(path)

    if len(gdf) == 0:
        if mode == "w":
            remove_gpkg_layer(path, layer)
        return path

    chunks = _create_chunks(gdf, chunk_size)
    logger.debug(f"Writing {len(gdf)} features to {path}:{layer} in {len(chunks)} chunk(s)")

    if not show_progress:
        for i, chunk in enumerate(chunks):
            chunk.to_file(path, layer=layer, driver="GPKG", mode=mode if i == 0 else "a")
        return path

    with Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]Writing GPKG..."),
        BarColumn(bar_width=40),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task(f"[cyan]Writing {layer}", total=len(chunks))
        for i, chunk in enumerate(chunks):
            try:
                chunk.to_file(path, layer=layer, driver="GPKG", mode=mode if i == 0 else "a")
            except Exception as e:
                logger.error(f"Failed to write chunk {i + 1} of {layer}: {e}")
                raise
            progress.update(task, advance=1)

    return path
