"""Routes package for the home-services escrow backend."""


def register_routes(app):
    """Register all route blueprints with the application."""
    from .payments import payments_bp
    from .disputes import disputes_bp

    app.register_blueprint(payments_bp, url_prefix='/api/payments')
    app.register_blueprint(disputes_bp, url_prefix='/api/disputes')
