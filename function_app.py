import azure.functions as func

from catalog_api.app import create_app

app = create_app()

# AsgiFunctionApp runs the FastAPI lifespan on cold start
function_app = func.AsgiFunctionApp(app=app, http_auth_level=func.AuthLevel.ANONYMOUS)
