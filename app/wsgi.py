from app.commerce import create_app
from app.commerce.modules.tracking.queue import start_shared_queue

app = create_app()
# imported once per gunicorn worker (no --preload), so each worker runs its own flush timer
start_shared_queue(app)
