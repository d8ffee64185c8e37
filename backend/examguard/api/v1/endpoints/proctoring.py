from fastapi import APIRouter, Depends

from ....core.config import settings
from ....api.deps import get_supervisor
from ....proctoring.classifier import BLOCKED_KEYS, CAPTURE_PHASE_KEYS

router = APIRouter()


@router.get("/policy")
async def get_proctoring_policy(supervisor=Depends(get_supervisor)):
    """
    Client-side lockdown rules. Keys in ``captureKeys`` must be cancelled in
    the capture phase of keydown, keyup and keypress so the browser never
    acts on them.
    """
    return {
        "blockedKeys": sorted(BLOCKED_KEYS),
        "captureKeys": sorted(CAPTURE_PHASE_KEYS),
        "requireFullscreen": True,
        "escalation": supervisor.policy.describe(),
        "autoSubmitGraceSeconds": settings.auto_submit_grace_seconds,
        "lookAwayAlertThreshold": settings.look_away_alert_threshold,
        "faceSampleIntervalSeconds": 1.0,
    }
