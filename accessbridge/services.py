"""Explicit construction of the service graph.

One ConfigStore, VendorClient, ResidentSyncEngine and IdentityIssuer per
process. Tests build their own with fakes instead of patching globals.
"""

from dataclasses import dataclass

import httpx
from sqlalchemy.orm import sessionmaker

from .config import ConfigStore
from .identity import IdentityIssuer, QRDecoder
from .residents import ResidentSyncEngine
from .vendor import VendorClient


@dataclass
class Services:
    config: ConfigStore
    vendor: VendorClient
    residents: ResidentSyncEngine
    identity: IdentityIssuer


def build_services(
    session_factory: sessionmaker,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    decoder: QRDecoder | None = None,
    tz=None,
) -> Services:
    config = ConfigStore(session_factory)
    vendor = VendorClient(config, transport=transport)
    residents = ResidentSyncEngine(session_factory, vendor, config, tz=tz)
    identity = IdentityIssuer(residents, vendor, decoder=decoder, tz=tz)
    return Services(config=config, vendor=vendor, residents=residents, identity=identity)
