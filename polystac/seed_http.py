"""Seed a STAC API server with synthetic items through its HTTP write endpoints."""

from __future__ import annotations

import argparse
import json
import random
import sys
import time
import urllib.error
import urllib.request
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, Sequence

__all__ = [
    "PLATFORMS",
    "collection_document",
    "synthetic_items",
    "wait_ready",
    "post_json",
    "main",
]

PLATFORMS = ("S2A", "S2B", "L8", "L9", "MODIS")
_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)
_YEAR_SECONDS = 365 * 86400
_REQUEST_TIMEOUT = 30.0
_READY_POLL = 0.5
_COLLECTION_WAIT = 30.0
_COLLECTION_POLL = 0.2


class _SeedError(Exception):
    pass


def collection_document(collection_id: str) -> dict[str, Any]:
    """The synthetic benchmark collection."""
    return {
        "type": "Collection",
        "stac_version": "1.0.0",
        "id": collection_id,
        "description": "benchmark synthetic collection",
        "license": "proprietary",
        "extent": {
            "spatial": {"bbox": [[-180, -90, 180, 90]]},
            "temporal": {"interval": [[None, None]]},
        },
        "links": [],
    }


def synthetic_items(n: int, collection_id: str, seed: int = 1) -> Iterator[dict[str, Any]]:
    """Yield ``n`` deterministic point items spread over 2024 and the globe."""
    rng = random.Random(seed)
    for i in range(n):
        lon = -180 + rng.random() * 360
        lat = -90 + rng.random() * 180
        moment = _EPOCH + timedelta(seconds=rng.randrange(_YEAR_SECONDS))
        yield {
            "type": "Feature",
            "stac_version": "1.0.0",
            "id": f"item-{i:07d}",
            "collection": collection_id,
            "geometry": {"type": "Point", "coordinates": [lon, lat]},
            "bbox": [lon, lat, lon, lat],
            "properties": {
                "datetime": moment.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "eo:cloud_cover": rng.random() * 100,
                "platform": PLATFORMS[rng.randrange(len(PLATFORMS))],
            },
            "links": [],
            "assets": {},
        }


def _get_status(url: str) -> int | None:
    try:
        with urllib.request.urlopen(url, timeout=_REQUEST_TIMEOUT) as response:
            return response.status
    except urllib.error.HTTPError as exc:
        return exc.code
    except (OSError, ValueError):
        return None


def wait_ready(base: str, timeout: float) -> None:
    """Poll ``base/`` until it answers below 500; raise TimeoutError otherwise."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        status = _get_status(base + "/")
        if status is not None and status < 500:
            return
        time.sleep(_READY_POLL)
    raise TimeoutError(f"timeout after {timeout:g}s")


def post_json(url: str, body: Any) -> tuple[int, str]:
    """POST a JSON document; returns (status, body text), status 0 on transport failure."""
    data = json.dumps(body).encode()
    request = urllib.request.Request(
        url, data=data, headers={"Content-Type": "application/json"}, method="POST"
    )
    try:
        with urllib.request.urlopen(request, timeout=_REQUEST_TIMEOUT) as response:
            return response.status, response.read().decode("utf-8", "replace")
    except urllib.error.HTTPError as exc:
        try:
            payload = exc.read() or b""
        except OSError:
            payload = b""
        return exc.code, payload.decode("utf-8", "replace")
    except (OSError, ValueError) as exc:
        return 0, str(exc)


def _wait_collection_visible(url: str) -> None:
    # Some servers acknowledge the collection before reads can see it.
    deadline = time.monotonic() + _COLLECTION_WAIT
    while time.monotonic() < deadline:
        if _get_status(url) == 200:
            return
        time.sleep(_COLLECTION_POLL)


def _seed(base: str, n: int, collection_id: str) -> None:
    try:
        wait_ready(base, 90.0)
    except TimeoutError as exc:
        raise _SeedError(f"server not ready: {exc}") from None

    status, text = post_json(base + "/collections", collection_document(collection_id))
    if status not in (200, 201, 409):
        raise _SeedError(f"create collection: status {status}: {text}")
    _wait_collection_visible(f"{base}/collections/{collection_id}")

    print(f"seeding {n} items into {base} ...", file=sys.stderr)
    start = time.monotonic()
    items_url = f"{base}/collections/{collection_id}/items"
    for count, item in enumerate(synthetic_items(n, collection_id), start=1):
        status, text = post_json(items_url, item)
        if status not in (200, 201):
            raise _SeedError(f"upsert {item['id']}: status {status}: {text}")
        if count % 500 == 0:
            rate = count / max(time.monotonic() - start, 1e-9)
            print(f"  {count}/{n} ({rate:.0f} items/s)", file=sys.stderr)
    print(f"done in {time.monotonic() - start:.3f}s", file=sys.stderr)


def main(argv: Sequence[str] | None = None) -> int:
    """Seed the server named by ``-url``; returns a process exit code."""
    parser = argparse.ArgumentParser(description="Seed a STAC API over HTTP", allow_abbrev=False)
    parser.add_argument("-url", dest="url", default="http://localhost:8080", help="STAC API base URL")
    parser.add_argument("-n", dest="n", type=int, default=1000, help="number of items")
    parser.add_argument("-collection", dest="collection", default="bench", help="collection ID")
    args = parser.parse_args(argv)
    try:
        _seed(args.url.rstrip("/"), args.n, args.collection)
    except _SeedError as exc:
        print(f"bench-seed-http: {exc}", file=sys.stderr)
        return 1
    return 0