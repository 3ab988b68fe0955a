"""
Royalty Sweeper - Escrow Watchlist

Merges addresses given on the command line with an optional addresses file
(one per line, blank lines and '#' comments ignored) into a deduplicated,
sorted set of escrows for one fa_metadata address.

The build is atomic: any bad address fails the whole watchlist.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from royalty_sweeper.core.exceptions import ConfigError, ParseError
from royalty_sweeper.core.types import parse_address
from royalty_sweeper.models.schemas import EscrowKey

logger = logging.getLogger(__name__)

COMMENT_PREFIX = "#"


@dataclass(frozen=True)
class Watchlist:
    """Escrows watched for the lifetime of the process. Read-only."""
    fa_metadata_address: str
    keys: tuple[EscrowKey, ...]

    def __iter__(self) -> Iterator[EscrowKey]:
        return iter(self.keys)

    def __len__(self) -> int:
        return len(self.keys)

    def __contains__(self, key: object) -> bool:
        return key in self.keys


def read_addresses_file(path: Union[str, Path]) -> list[str]:
    """
    Parse an addresses file.

    Returns canonical addresses in file order (duplicates kept).

    Raises:
        ConfigError: If the file cannot be read
        ParseError: On the first line that is not a valid address
    """
    path = Path(path)
    try:
        contents = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"read file {path}: {e}")

    addresses = []
    for idx, raw in enumerate(contents.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith(COMMENT_PREFIX):
            continue
        try:
            addresses.append(parse_address(line))
        except ValueError as e:
            raise ParseError(line=idx, reason=str(e), path=str(path))
    return addresses


def build_watchlist(
    cli_addresses: Iterable[str],
    fa_metadata_address: str,
    file_path: Optional[Union[str, Path]] = None,
    require_non_empty: bool = True,
) -> Watchlist:
    """
    Union of CLI and file addresses, keyed by fa_metadata_address.

    Raises:
        ConfigError: Malformed CLI address, unreadable file, or an empty
            result when require_non_empty is set (watch mode)
        ParseError: Malformed file line
    """
    try:
        fa_metadata = parse_address(fa_metadata_address)
    except ValueError as e:
        raise ConfigError(f"invalid fa_metadata address: {e}")

    nfts: set[str] = set()
    for address in cli_addresses:
        try:
            nfts.add(parse_address(address))
        except ValueError as e:
            raise ConfigError(f"invalid nft address: {e}")

    if file_path is not None:
        from_file = read_addresses_file(file_path)
        logger.info(f"[WATCHLIST] Read {len(from_file)} addresses from {file_path}")
        nfts.update(from_file)

    if require_non_empty and not nfts:
        raise ConfigError("watch mode requires --nft and/or --nfts-file")

    keys = tuple(sorted(EscrowKey(nft, fa_metadata) for nft in nfts))
    return Watchlist(fa_metadata_address=fa_metadata, keys=keys)
