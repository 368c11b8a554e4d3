from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from models.audit_mixin import APP_TIMEZONE
from tasks.eod_tasks import run_eod_tasks

scheduler = BackgroundScheduler()

# Every day at 11:00 PM school time
scheduler.add_job(run_eod_tasks, CronTrigger(hour=23, minute=0, timezone=APP_TIMEZONE), id='eod_tasks_job')
