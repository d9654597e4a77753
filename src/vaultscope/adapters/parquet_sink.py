from __future__ import annotations
import os, pyarrow as pa, pyarrow.parquet as pq
from typing import Iterable

from eth_utils import to_checksum_address

from ..ports.storage import LedgerSink
from ..domain.models import AddressPosition

POSITIONS_SCHEMA = pa.schema([
    pa.field("address",           pa.large_string()),
    pa.field("net_position",      pa.large_string()),   # big ints as strings
    pa.field("total_deposits",    pa.large_string()),
    pa.field("total_withdrawals", pa.large_string()),
    pa.field("net_shares",        pa.large_string()),
    pa.field("first_activity",    pa.int64()),
    pa.field("last_activity",     pa.int64()),
    pa.field("deposit_count",     pa.int32()),
    pa.field("withdrawal_count",  pa.int32()),
])

def positions_to_table(positions: Iterable[AddressPosition]) -> pa.Table:
    ps = list(positions)
    arrays = {
        "address":           pa.array([to_checksum_address(p.address) for p in ps], pa.large_string()),
        "net_position":      pa.array([str(p.net_position) for p in ps], pa.large_string()),
        "total_deposits":    pa.array([str(p.total_deposits) for p in ps], pa.large_string()),
        "total_withdrawals": pa.array([str(p.total_withdrawals) for p in ps], pa.large_string()),
        "net_shares":        pa.array([str(p.net_shares) for p in ps], pa.large_string()),
        "first_activity":    pa.array([p.first_activity for p in ps], pa.int64()),
        "last_activity":     pa.array([p.last_activity for p in ps], pa.int64()),
        "deposit_count":     pa.array([p.deposit_count for p in ps], pa.int32()),
        "withdrawal_count":  pa.array([p.withdrawal_count for p in ps], pa.int32()),
    }
    return pa.Table.from_pydict(arrays, schema=POSITIONS_SCHEMA).sort_by([("address", "ascending")])

class ParquetLedgerSink(LedgerSink):
    """Writes one ledger snapshot per call, atomically (tmp file + replace)."""
    def __init__(self, path: str, codec: str = "zstd") -> None:
        self.path = path
        self.codec = codec
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    def write_positions(self, positions: Iterable[AddressPosition]) -> str:
        table = positions_to_table(positions)
        tmp = self.path + ".tmp"
        pq.write_table(table, tmp, compression=self.codec)
        os.replace(tmp, self.path)
        return self.path
