"""
Document processor interface and registry.

Processors are looked up by string id; adding a processor means
registering another implementation, never changing the workflow engine.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..models.extraction import (
    DocumentClassification,
    DocumentType,
    ProcessingResult,
    ProcessorContext,
)

logger = logging.getLogger(__name__)


@dataclass
class ProcessorConfig:
    id: str
    name: str
    description: str
    supported_types: List[DocumentType]
    options: Dict[str, Any] = field(default_factory=dict)


class BaseProcessor(ABC):
    """
    Abstract base class for document processors.

    Subclasses classify a document and extract invoice, payment or
    remittance fields from it. Extraction never raises: failures come
    back as a ProcessingResult with success=False.
    """

    config: ProcessorConfig

    @abstractmethod
    async def classify_document(self, context: ProcessorContext) -> DocumentClassification:
        pass

    @abstractmethod
    async def extract_invoice(self, context: ProcessorContext) -> ProcessingResult:
        pass

    @abstractmethod
    async def extract_payment(self, context: ProcessorContext) -> ProcessingResult:
        pass

    @abstractmethod
    async def extract_remittance(self, context: ProcessorContext) -> ProcessingResult:
        pass

    async def process(self, context: ProcessorContext) -> ProcessingResult:
        """Classify the document, then extract according to its type."""
        start_time = time.monotonic()
        classification = await self.classify_document(context)

        if classification.type == DocumentType.INVOICE:
            result = await self.extract_invoice(context)
        elif classification.type == DocumentType.PAYMENT:
            result = await self.extract_payment(context)
        elif classification.type == DocumentType.REMITTANCE:
            result = await self.extract_remittance(context)
        else:
            return self.create_result(
                False, start_time, error=f"Unsupported document type: {classification.type.value}"
            )

        result.document_type = classification.type
        return result

    def create_result(
        self,
        success: bool,
        start_time: float,
        data: Any = None,
        error: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ProcessingResult:
        """Build a result stamped with this processor's id and the elapsed time."""
        return ProcessingResult(
            success=success,
            processor_id=self.config.id,
            processing_time_ms=int((time.monotonic() - start_time) * 1000),
            data=data if success else None,
            error=None if success else (error or "Unknown error"),
            document_type=getattr(data, "document_type", None) if success else None,
            metadata=metadata or {},
        )

    @staticmethod
    def hinted_classification(context: ProcessorContext) -> Optional[DocumentClassification]:
        """Classification taken from the caller's expected type, if one was given."""
        if context.expected_type and context.expected_type != DocumentType.UNKNOWN:
            return DocumentClassification(
                type=context.expected_type,
                confidence=1.0,
                reasoning="Type provided as hint",
            )
        return None


class ProcessorRegistry:
    """Processors by id, in registration order."""

    def __init__(self):
        self._processors: Dict[str, BaseProcessor] = {}

    def register(self, processor: BaseProcessor) -> None:
        if processor.config.id in self._processors:
            logger.warning(f"Replacing registered processor {processor.config.id}")
        self._processors[processor.config.id] = processor

    def get(self, processor_id: str) -> Optional[BaseProcessor]:
        return self._processors.get(processor_id)

    def get_all(self) -> List[BaseProcessor]:
        return list(self._processors.values())

    def get_by_type(self, document_type: DocumentType) -> List[BaseProcessor]:
        return [p for p in self._processors.values() if document_type in p.config.supported_types]

    def first(self) -> Optional[BaseProcessor]:
        return next(iter(self._processors.values()), None)

    def __len__(self):
        return len(self._processors)
