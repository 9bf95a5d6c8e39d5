"""
routes/inventory.py
-------------------

Inventory and shift routes for the signed-in user's branch.
"""

from __future__ import annotations

import json
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from branchdesk.core.context import SessionManager
from branchdesk.logging_config import logger
from branchdesk.routes.auth import get_session_manager
from branchdesk.schemas.inventory import InventoryItem, ShiftUpdate

router = APIRouter(tags=["Inventory"])


@router.get("/inventory", response_model=List[InventoryItem])
async def get_inventory(manager: SessionManager = Depends(get_session_manager)):
    items = await manager.fetch_inventory()
    logger.info(json.dumps({"event": "inventory_response", "total": len(items)}))
    return items


@router.delete("/inventory/{item_id}", status_code=204)
async def delete_inventory(item_id: int, manager: SessionManager = Depends(get_session_manager)):
    result = await manager.delete_inventory(item_id)
    if not result.ok:
        raise HTTPException(status_code=404, detail=str(result.error))


@router.put("/shifts")
async def put_shift(data: ShiftUpdate, manager: SessionManager = Depends(get_session_manager)):
    result = await manager.set_team_shift(data.user_id, data.day, data.shift)
    if not result.ok:
        raise HTTPException(status_code=502, detail="Vardiya güncellenemedi")
    return {"status": "ok", "updated": len(result.value or [])}
