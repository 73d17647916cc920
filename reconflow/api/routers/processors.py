"""Registered document processors."""
from dataclasses import asdict

from fastapi import APIRouter, Depends

from ...processors import ProcessorRegistry
from ..dependencies import get_processors

router = APIRouter()


@router.get("")
async def list_processors(registry: ProcessorRegistry = Depends(get_processors)):
    return [asdict(processor.config) for processor in registry.get_all()]
