ADMIN = "ADMIN"
