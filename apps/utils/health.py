from django.http import JsonResponse
from django.db import connection
from django.core.cache import cache


def health_check(request):
    status = {"db": "unknown", "cache": "unknown"}
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
        status["db"] = "ok"

        # Round trip through whichever backend is configured (redis in production)
        cache.set("health:ping", "pong", timeout=5)
        if cache.get("health:ping") != "pong":
            raise RuntimeError("cache round trip failed")
        status["cache"] = "ok"

        return JsonResponse({"status": "ok", "components": status}, status=200)
    except Exception as e:
        return JsonResponse(
            {"status": "error", "detail": str(e), "components": status},
            status=503
        )
