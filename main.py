"""
Yorumi scraper API: FastAPI server.
Serves manga (MangaKatana) and anime (AnimePahe, HiAnime) data to the Yorumi
frontend, matched against AniList metadata.

Run: uvicorn main:app --host 0.0.0.0 --port 3001
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

import config
from anime_service import AnimeService
from animepahe import AnimePaheScraper
from browser import BrowserProvider, SharedBrowser
from manga_service import MangaService
from mapping import MappingStore, identify

logging.basicConfig(level=config.LOG_LEVEL)
log = logging.getLogger("yorumi")

app = FastAPI(title="Yorumi Scraper API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)

# Built once and shared by every request
provider = BrowserProvider()
shared_browser = SharedBrowser(provider)
manga = MangaService(provider)
anime = AnimeService(AnimePaheScraper(shared_browser))
mappings = MappingStore()


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=400)


async def _json_object(request: Request) -> dict | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    log.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


@app.get("/")
async def health():
    return PlainTextResponse("Yorumi scraper API is running")


# --- Manga ---


@app.get("/api/manga/search")
async def manga_search(q: str | None = None):
    if not q or not q.strip():
        return _bad_request("Query parameter 'q' is required")
    return {"data": await manga.unified_search(q)}


@app.get("/api/manga/details/{manga_id}")
async def manga_details(manga_id: str):
    details = await manga.get_details(manga_id)
    if details is None:
        return JSONResponse({"error": "Manga not found"}, status_code=404)
    return {"data": details}


@app.get("/api/manga/chapters/{manga_id}")
async def manga_chapters(manga_id: str):
    return {"chapters": await manga.get_chapters(manga_id)}


@app.get("/api/manga/pages")
async def manga_pages(url: str | None = None):
    if not url:
        return _bad_request("Query parameter 'url' is required")
    return {"pages": await manga.get_chapter_pages(url)}


@app.post("/api/manga/prefetch")
async def manga_prefetch(request: Request):
    body = await _json_object(request)
    urls = body.get("urls") if body is not None else None
    if not isinstance(urls, list):
        return _bad_request("Body field 'urls' must be a list")
    return manga.prefetch([u for u in urls if isinstance(u, str)])


@app.get("/api/manga/hot-updates")
async def manga_hot_updates():
    return {"data": await manga.get_hot_updates()}


@app.get("/api/manga/spotlight")
async def manga_spotlight():
    return {"data": await manga.get_enriched_spotlight()}


# --- Anime ---


@app.get("/api/scraper/search")
async def scraper_search(q: str | None = None):
    if not q or not q.strip():
        return _bad_request("Query parameter 'q' is required")
    return await anime.search(q)


@app.get("/api/scraper/episodes")
async def scraper_episodes(session: str | None = None, page: int = 1):
    if not session:
        return _bad_request("Query parameter 'session' is required")
    return await anime.get_episodes(session, max(page, 1))


@app.get("/api/scraper/streams")
async def scraper_streams(anime_session: str | None = None, ep_session: str | None = None):
    if not anime_session or not ep_session:
        return _bad_request("Query parameters 'anime_session' and 'ep_session' are required")
    return await anime.get_streams(anime_session, ep_session)


@app.get("/api/scraper/resolve")
async def scraper_resolve(title: str | None = None, year: int | None = None, type: str | None = None):
    if not title or not title.strip():
        return _bad_request("Query parameter 'title' is required")
    return {"session": await anime.resolve_session(title, year, type)}


@app.get("/api/hianime/spotlight")
async def hianime_spotlight():
    return {"titles": await anime.get_spotlight_titles()}


@app.get("/api/anime/spotlight")
async def anime_spotlight():
    return {"data": await anime.get_spotlight()}


# --- Mappings ---


@app.get("/api/mapping/{anilist_id}")
async def mapping_get(anilist_id: str):
    mapping = mappings.get(anilist_id)
    if mapping is None:
        return JSONResponse({"error": "Mapping not found"}, status_code=404)
    return mapping


@app.post("/api/mapping")
async def mapping_save(request: Request):
    body = await _json_object(request)
    if body is None:
        return _bad_request("Body must be a JSON object")
    anilist_id = body.get("anilistId")
    scraper_id = body.get("scraperId")
    if not anilist_id or not scraper_id:
        return _bad_request("Body fields 'anilistId' and 'scraperId' are required")
    mappings.save(anilist_id, str(scraper_id), body.get("title"))
    return {"success": True}


@app.delete("/api/mapping/{anilist_id}")
async def mapping_delete(anilist_id: str):
    mappings.delete(anilist_id)
    return {"success": True, "deleted": anilist_id}


@app.post("/api/mapping/identify")
async def mapping_identify(request: Request):
    body = await _json_object(request)
    if body is None:
        return _bad_request("Body must be a JSON object")
    slug = body.get("slug")
    title = body.get("title")
    if not slug or not title:
        return _bad_request("Body fields 'slug' and 'title' are required")
    anilist_id = await identify(mappings, str(slug), str(title))
    if anilist_id is None:
        return JSONResponse({"error": "AniList ID not found"}, status_code=404)
    return {"anilistId": anilist_id}


# --- Lifecycle ---


@app.on_event("startup")
async def startup():
    if config.WARM_CACHE_ON_STARTUP:
        manga.schedule(manga.warm_spotlight_cache(), "spotlight warm-up")


@app.on_event("shutdown")
async def shutdown():
    await anime.close()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.HOST, port=config.PORT)
