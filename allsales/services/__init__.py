"""
Services package

The services an app instance runs with are built once by create_app() and kept
in app.extensions["allsales"]. Use get_services() to reach them.
"""
from dataclasses import dataclass

from flask import current_app

from allsales.services.blacklist_service import BlacklistService
from allsales.services.search_service import SearchService
from allsales.services.update_service import UpdateService

EXTENSION_KEY = "allsales"


@dataclass
class CatalogServices:
    client: object
    blacklist: BlacklistService
    updates: UpdateService
    search: SearchService


def build_services(app, settings, client):
    blacklist = BlacklistService()
    services = CatalogServices(
        client=client,
        blacklist=blacklist,
        updates=UpdateService(
            app,
            client,
            blacklist,
            concurrency_limit=settings["update"]["concurrency_limit"],
            batch_size=settings["update"]["batch_size"],
        ),
        search=SearchService.from_settings(settings, client=client),
    )
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services(app=None) -> CatalogServices:
    app = app or current_app
    return app.extensions[EXTENSION_KEY]
