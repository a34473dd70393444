from subscription_service.api import health, payouts, points, subscriptions, webhooks


def register_blueprints(app):
    for module in (health, webhooks, subscriptions, points, payouts):
        app.register_blueprint(module.bp)
    app.logger.info("All routes registered")
