from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from problem_import.routers import pdf_import_router

app = FastAPI(
    title="Sprint Import API",
    description="Competition PDF → verified problem set",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(pdf_import_router)


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "sprint-import-api"}
