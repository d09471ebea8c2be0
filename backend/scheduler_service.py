"""
Scheduler pour les tâches automatiques Keystone CRM
- Snapshot quotidien du forecast Revenue Intelligence (vérifié toutes les 15 min)
"""

import logging
from datetime import datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import LOCAL_TZ, SNAPSHOTS_DISABLED, get_db

logger = logging.getLogger("scheduler")

SNAPSHOT_INTERVAL_MINUTES = 15
SNAPSHOT_STARTUP_DELAY_SECONDS = 7


class TaskScheduler:
    """Gestionnaire de tâches planifiées"""

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone=LOCAL_TZ)
        self.db = None

    def init_db(self):
        """Récupère la base partagée (None si MongoDB non configuré)"""
        if self.db is None:
            self.db = get_db()
        return self.db

    def start(self):
        """Démarre le scheduler avec toutes les tâches"""
        if SNAPSHOTS_DISABLED:
            logger.info("Snapshots Revenue Intelligence désactivés (REVENUE_INTELLIGENCE_SNAPSHOTS_DISABLED)")
            return

        # Peu après le boot, puis toutes les 15 minutes (1 snapshot/jour, dédupliqué)
        self.scheduler.add_job(
            self.snapshot_forecast,
            IntervalTrigger(minutes=SNAPSHOT_INTERVAL_MINUTES),
            id="revenue_intelligence_snapshot",
            name="Snapshot forecast Revenue Intelligence",
            next_run_time=datetime.now(LOCAL_TZ) + timedelta(seconds=SNAPSHOT_STARTUP_DELAY_SECONDS),
            replace_existing=True,
        )

        self.scheduler.start()
        logger.info("Scheduler démarré avec succès")

    def stop(self):
        """Arrête le scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler arrêté")

    # ==================== TÂCHES PLANIFIÉES ====================

    async def snapshot_forecast(self):
        """Stocke le forecast du jour (une seule fois par jour UTC)"""
        from services.ri_snapshots import upsert_daily_snapshot

        db = self.init_db()
        if db is None:
            return
        try:
            await upsert_daily_snapshot(db)
        except Exception:
            logger.exception("[revenue_intelligence_snapshots_job] failed")


# Instance globale
task_scheduler = TaskScheduler()
