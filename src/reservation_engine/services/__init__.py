"""Business logic services.

Services take their row store, secret, clock and sleep function as
constructor arguments; use ``services.factory.build_services`` to wire them.
"""

# Do NOT import services here - backends pull in SQLAlchemy or boto3
