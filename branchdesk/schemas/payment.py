"""
schemas/payment.py
------------------

Query parameters the payment gateway appends to its browser redirect.
All of them are optional strings; nothing beyond presence is checked.
"""

from __future__ import annotations

from typing import Mapping, Optional, Union
from urllib.parse import parse_qs

from pydantic import BaseModel


class PaymentRedirectParams(BaseModel):
    merchant_oid: Optional[str] = None
    failed_reason_code: Optional[str] = None
    failed_reason_msg: Optional[str] = None
    payment_id: Optional[str] = None

    @classmethod
    def from_query(cls, query: Union[str, Mapping[str, str]]) -> "PaymentRedirectParams":
        """Build the parameters from a raw query string or a mapping.

        A leading ``?`` is accepted; for repeated keys the first value wins.
        """
        if isinstance(query, str):
            parsed = parse_qs(query.lstrip("?"), keep_blank_values=True)
            values = {k: v[0] for k, v in parsed.items() if v}
        else:
            values = dict(query)
        return cls(**{name: values.get(name) for name in cls.model_fields})
