from problem_import.routers.pdf_import import router as pdf_import_router

__all__ = ["pdf_import_router"]
