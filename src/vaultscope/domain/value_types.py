from __future__ import annotations
from typing import NewType, Literal

Address = NewType("Address", str)   # 0x-prefixed, lowercase
Topic0  = NewType("Topic0", str)    # 66-char 0x-hash
Status  = Literal["done", "split", "skipped"]
EventKind = Literal["Deposit", "Withdraw", "Transfer", "VaultUpdate", "Unknown"]

ZERO_ADDRESS = Address("0x" + "0" * 40)
