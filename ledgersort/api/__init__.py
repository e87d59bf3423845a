from ledgersort.api.categorization import router as categorization_router

__all__ = ["categorization_router"]
