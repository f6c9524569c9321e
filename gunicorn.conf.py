# Scorebook Gunicorn Configuration
#
# IMPORTANT: live scoring sessions are held in memory (SCORING_SESSIONS dict)
# and commands for a match are serialised by an in-process lock. Multiple
# workers would each score their own copy of a match. Must use exactly 1 worker.

bind = "127.0.0.1:5000"
wsgi_app = "app:app"
workers = 1
threads = 4
timeout = 120
