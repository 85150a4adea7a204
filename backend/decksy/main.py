from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Optional

from decksy.analytics import AnalyticsTracker, emit
from decksy.cache import SharedStore, create_redis
from decksy.catalog import DECK_CATALOG, get_deck_by_slug
from decksy.clash_royale import ClashRoyaleAPI
from decksy.config import Settings, settings as default_settings
from decksy.database import Database
from decksy.experiments import list_experiments
from decksy.explainer import ExplainerService
from decksy.models import FeedbackRequest, RecommendationPayload
from decksy.player_tag import normalize_player_tag, player_tag_validation_message
from decksy.rate_limit import (
    RateLimitState,
    TokenBucketLimiter,
    is_internal_request,
    rate_limit_headers,
    resolve_identifier,
)
from decksy.recommendation_store import RecommendationStore, StoredRecommendation, build_profile_signature
from decksy.scoring import rank_decks, resolve_weight_strategy

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(name)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Politiques de rate limit par route (requêtes, fenêtre en ms)
RECOMMEND_LIMIT = (8, 60_000)
FEEDBACK_LIMIT = (10, 60_000)
FEEDBACK_USER_AGENT_LIMIT = (3, 10 * 60_000)
BLOCKED_USER_AGENT_RETRY_MS = 86_400_000


def error_response(status_code: int, message: str, state: Optional[RateLimitState] = None,
                   details: Optional[List[Dict]] = None) -> JSONResponse:
    content = {"error": message}
    if details is not None:
        content["details"] = details
    headers = rate_limit_headers(state) if state is not None else None
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def error_details(errors: List[Dict]) -> List[Dict]:
    return [
        {"loc": [str(part) for part in error["loc"]], "msg": error["msg"], "type": error["type"]}
        for error in errors
    ]


async def check_rate_limit(request: Request, resource: str, policy, identifier: Optional[str] = None) -> RateLimitState:
    limit, interval_ms = policy
    return await request.app.state.limiter.check(
        resource,
        resolve_identifier(request.headers, identifier),
        limit,
        interval_ms,
        force_bypass=is_internal_request(request.headers, request.app.state.settings.INTERNAL_API_TOKEN),
    )


async def read_json(request: Request):
    try:
        return await request.json()
    except ValueError:
        return None


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup/shutdown"""
        # Startup
        logger.info("Starting Decksy API...")
        redis = create_redis(settings.REDIS_URL)
        store = SharedStore(redis)

        app.state.redis = redis
        app.state.limiter = TokenBucketLimiter(redis)
        app.state.analytics = AnalyticsTracker()
        app.state.clash_royale = ClashRoyaleAPI(
            api_key=settings.CLASH_ROYALE_API_KEY,
            base_url=settings.CLASH_ROYALE_API_PROXY,
            store=store
        )
        app.state.explainer = ExplainerService(settings.GEMINI_API_KEY, settings.GEMINI_MODEL)
        app.state.recommendations = RecommendationStore()
        app.state.db = None

        if settings.async_database_url:
            db = Database(settings.async_database_url)
            try:
                await db.init_db()
                app.state.db = db
            except Exception as e:
                logger.error(f"Database unavailable, using in-memory recommendation store: {e}")
                await db.close()

        logger.info("API Ready")

        yield

        # Shutdown
        logger.info("Shutting down...")
        if app.state.db is not None:
            await app.state.db.close()
        if redis is not None:
            await redis.aclose()

    app = FastAPI(
        title="Decksy API",
        description="Clash Royale deck recommendations scored against a player's collection and playstyle",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.settings = settings

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        """Per-client limit on GET data routes"""
        path = request.url.path
        prefix = next((p for p in settings.RATE_LIMITED_PATHS if path.startswith(p)), None)
        if request.method != "GET" or prefix is None:
            return await call_next(request)

        state = await check_rate_limit(
            request,
            f"middleware:{prefix}",
            (settings.RATE_LIMIT_REQUESTS, settings.RATE_LIMIT_WINDOW_MS)
        )
        if not state.ok:
            logger.warning(f"Rate limit exceeded on {path}")
            return error_response(429, "Too many requests", state)

        response = await call_next(request)
        for name, value in rate_limit_headers(state).items():
            response.headers.setdefault(name, value)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return error_response(400, "Invalid request", details=error_details(exc.errors()))

    register_routes(app)
    return app


def register_routes(app: FastAPI):

    @app.get("/")
    async def root():
        """Root endpoint with API info"""
        return {
            "name": "Decksy API",
            "version": "1.0.0",
            "status": "operational",
            "docs": "/docs",
            "endpoints": {
                "decks": "/api/v1/decks",
                "deck": "/api/v1/decks/{slug}",
                "experiments": "/api/v1/experiments",
                "player": "/api/v1/player/{tag}",
                "battles": "/api/v1/battles/{tag}",
                "recommend": "/api/v1/recommend",
                "feedback": "/api/v1/feedback",
                "health": "/health"
            }
        }

    @app.get("/health")
    async def health():
        """Health check endpoint for Docker"""
        return {
            "status": "healthy",
            "timestamp": datetime.utcnow().isoformat(),
            "sharedRateLimit": app.state.limiter.is_shared,
            "database": app.state.db is not None
        }

    @app.get("/api/v1/decks")
    async def get_decks():
        """Full deck catalog"""
        return {"decks": [deck.to_wire() for deck in DECK_CATALOG], "total": len(DECK_CATALOG)}

    @app.get("/api/v1/decks/{slug}")
    async def get_deck(slug: str):
        deck = get_deck_by_slug(slug)
        if deck is None:
            raise HTTPException(
                status_code=404,
                detail={"message": f"Deck {slug} not found", "available": [d.slug for d in DECK_CATALOG]}
            )
        return deck.to_wire()

    @app.get("/api/v1/experiments")
    async def get_experiments():
        """Running experiments and their variant weights"""
        return {
            "experiments": [
                {
                    "key": experiment.key.value,
                    "description": experiment.description,
                    "owner": experiment.owner,
                    "defaultVariant": experiment.default_variant,
                    "variants": [
                        {"name": v.name, "weight": v.weight, "description": v.description}
                        for v in experiment.variants
                    ],
                    "tags": experiment.tags
                }
                for experiment in list_experiments()
            ]
        }

    @app.get("/api/v1/player/{tag}")
    async def get_player(tag: str):
        message = player_tag_validation_message(tag)
        if message:
            return error_response(400, message)

        profile = await app.state.clash_royale.fetch_player_profile(normalize_player_tag(tag))
        return profile.to_wire()

    @app.get("/api/v1/battles/{tag}")
    async def get_battles(tag: str):
        message = player_tag_validation_message(tag)
        if message:
            return error_response(400, message)

        battles = await app.state.clash_royale.fetch_battle_log(normalize_player_tag(tag))
        return {"battles": battles}

    @app.post("/api/v1/recommend")
    async def recommend(request: Request):
        """
        Rank the catalog for a player and attach coaching explainers.

        Opponent exposure and stored feedback preferences are looked up when
        the request doesn't carry them.
        """
        state = await check_rate_limit(request, "api:recommend:post", RECOMMEND_LIMIT)
        if not state.ok:
            return error_response(429, "Too many recommendation requests", state)

        try:
            body = RecommendationPayload.model_validate(await read_json(request))
        except ValidationError as e:
            return error_response(400, "Invalid recommendation payload", state, error_details(e.errors()))

        battle_aggregate = body.battle_aggregate
        try:
            fetched = await app.state.clash_royale.fetch_battle_archetype_aggregate(body.player.tag)
            battle_aggregate = fetched or battle_aggregate
        except Exception as e:
            logger.warning(f"Battle aggregate unavailable for {body.player.tag}: {e}")

        feedback_preferences = body.feedback_preferences
        if feedback_preferences is None and body.user_id and app.state.db is not None:
            try:
                feedback_preferences = await app.state.db.get_feedback_preferences(body.user_id)
            except Exception as e:
                logger.warning(f"Feedback preferences unavailable for {body.user_id}: {e}")

        # Le sessionId du client ne sert qu'à l'assignation d'expérience
        session_id = str(uuid.uuid4())
        payload = body.model_copy(update={
            "battle_aggregate": battle_aggregate,
            "feedback_preferences": feedback_preferences,
        })

        strategy = resolve_weight_strategy(payload)
        scores = rank_decks(DECK_CATALOG, payload, sink=app.state.analytics, strategy=strategy)
        explainers = await asyncio.gather(*[
            app.state.explainer.generate(score.deck, score, payload.player) for score in scores
        ])
        results = [{**score.to_wire(), "explainer": explainer} for score, explainer in zip(scores, explainers)]

        record = StoredRecommendation(
            session_id=session_id,
            player=payload.player,
            quiz=payload.quiz,
            decks=results,
            user_id=payload.user_id,
            variant=strategy.variant,
        )
        await save_recommendation(app, record)

        return JSONResponse(
            content={"sessionId": session_id, "results": results},
            headers=rate_limit_headers(state)
        )

    @app.get("/api/v1/recommend")
    async def get_recommendation(session_id: str = Query(..., alias="sessionId", min_length=1)):
        if app.state.db is not None:
            try:
                stored = await app.state.db.get_recommendation(session_id)
                if stored:
                    return {"sessionId": session_id, "results": stored["decks"]}
            except Exception as e:
                logger.error(f"Error loading recommendation {session_id}: {e}")

        record = app.state.recommendations.get(session_id)
        if record is None:
            raise HTTPException(
                status_code=404,
                detail={"message": f"Recommendation {session_id} not found"}
            )
        return {"sessionId": session_id, "results": record.decks}

    @app.post("/api/v1/feedback")
    async def submit_feedback(request: Request):
        """
        Record a rating for a served recommendation.

        Limited per client, then per user agent. Blocklisted user agents are
        refused unless the request carries the internal token.
        """
        state = await check_rate_limit(request, "api:feedback:post", FEEDBACK_LIMIT)
        if not state.ok:
            return error_response(429, "Too many feedback submissions", state)

        try:
            body = FeedbackRequest.model_validate(await read_json(request))
        except ValidationError as e:
            return error_response(400, "Invalid feedback payload", state, error_details(e.errors()))

        config = app.state.settings
        user_agent = (request.headers.get("user-agent") or "unknown").lower()
        internal = is_internal_request(request.headers, config.INTERNAL_API_TOKEN)

        if not internal and any(needle in user_agent for needle in config.user_agent_blocklist):
            logger.warning(f"Feedback refused for blocklisted user agent: {user_agent}")
            deny = RateLimitState(
                ok=False,
                remaining=0,
                limit=0,
                retry_after_ms=BLOCKED_USER_AGENT_RETRY_MS,
                reset_in_ms=BLOCKED_USER_AGENT_RETRY_MS,
            )
            return error_response(429, "Feedback temporarily unavailable", deny)

        ua_state = await check_rate_limit(request, "api:feedback:ua", FEEDBACK_USER_AGENT_LIMIT, identifier=user_agent)
        if not ua_state.ok:
            return error_response(429, "Feedback temporarily rate limited", ua_state)

        if not await save_feedback(app, body, user_agent):
            raise HTTPException(
                status_code=404,
                detail={"message": f"Recommendation {body.session_id} not found"}
            )

        emit(app.state.analytics, "feedback_submitted", {"sessionId": body.session_id, "rating": body.rating})
        return JSONResponse(content=body.to_wire(), headers=rate_limit_headers(state))

    @app.get("/api/v1/feedback")
    async def get_feedback(session_id: Optional[str] = Query(None, alias="sessionId")):
        if not session_id:
            return {"feedback": []}

        if app.state.db is not None:
            return {"feedback": await app.state.db.list_feedback(session_id)}

        record = app.state.recommendations.get(session_id)
        return {"feedback": list(reversed(record.feedback)) if record else []}


async def save_recommendation(app: FastAPI, record: StoredRecommendation):
    """Persist to Postgres when configured, otherwise (or on failure) keep in memory"""
    if app.state.db is not None:
        try:
            record.profile_signature = build_profile_signature(record.player)
            await app.state.db.save_recommendation(record)
            return
        except Exception as e:
            logger.error(f"Error saving recommendation {record.session_id}: {e}")

    app.state.recommendations.save(record)


async def save_feedback(app: FastAPI, body: FeedbackRequest, user_agent: str) -> bool:
    """Returns False when the session is unknown"""
    if app.state.db is not None:
        if await app.state.db.get_recommendation(body.session_id) is None:
            return False
        await app.state.db.save_feedback(body.session_id, body.rating, body.notes, user_agent)
        return True

    return app.state.recommendations.add_feedback(body.session_id, {
        "rating": body.rating,
        "notes": body.notes,
        "createdAt": datetime.utcnow().isoformat(),
    })


app = create_app()
