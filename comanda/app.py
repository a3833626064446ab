# module comanda.app
import logging

from comanda.app_setup.factory import create_app

logging.getLogger("comanda").setLevel(logging.INFO)

app = create_app()
