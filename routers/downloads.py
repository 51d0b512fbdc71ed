import os
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from constants import Settings
from dependencies import get_settings
from logging_config import get_logger

logger = get_logger(__name__)

downloads_router = APIRouter(prefix="/download", tags=["downloads"])

APK_NAME = "snes-online.apk"
ZIP_FALLBACK_NAME = "snes-online-win64-portable.zip"


def default_apk_path(root: Path) -> Path:
    return root / "platform" / "android" / "app" / "build" / "outputs" / "apk" / "release" / "app-release.apk"


def default_zip_path(root: Path) -> Path:
    """Newest portable Windows build under build_vs/, or the fallback name if none exists."""
    build_dir = root / "build_vs"
    candidates = [p for p in build_dir.glob("snes-online-*-win64-portable.zip") if p.is_file()]
    if not candidates:
        return build_dir / ZIP_FALLBACK_NAME
    return max(candidates, key=lambda p: p.stat().st_mtime)


def send_file(path: Path, download_name: str, media_type: str) -> FileResponse:
    if not path.is_file():
        logger.warning(f"Download requested but file is missing: {path}")
        raise HTTPException(status_code=404, detail="file_not_found")
    return FileResponse(
        path,
        media_type=media_type,
        filename=download_name,
        headers={"Cache-Control": "no-store"},
    )


@downloads_router.get("/apk")
async def download_apk(settings: Settings = Depends(get_settings)):
    path = Path(settings.apk_path) if settings.apk_path else default_apk_path(Path(os.getcwd()))
    return send_file(path, APK_NAME, "application/vnd.android.package-archive")


@downloads_router.get("/zip")
async def download_zip(settings: Settings = Depends(get_settings)):
    path = Path(settings.zip_path) if settings.zip_path else default_zip_path(Path(os.getcwd()))
    return send_file(path, path.name or ZIP_FALLBACK_NAME, "application/zip")
