"""uvicorn entrypoint: `uvicorn main:app` from this directory.

The app is built here rather than in chatrelay.app so importing the
package never requires DATABASE_URL and friends to be set.
"""

from chatrelay.app import add_request_id_middleware, create_app

app = create_app()
add_request_id_middleware(app)

__all__ = ["app"]
