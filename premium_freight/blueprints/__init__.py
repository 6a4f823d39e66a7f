"""HTTP blueprints: auth, orders (session) and actions (e-mail links)."""
