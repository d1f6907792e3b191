from . import auth, reports, tasks, time_entries, timers, users, whatsapp

ALL_ROUTERS = [
    auth.router,
    users.router,
    tasks.router,
    time_entries.router,
    timers.router,
    reports.router,
    whatsapp.router,
]
