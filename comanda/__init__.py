"""
Comanda checkout: réconciliation paiement Stripe -> commande delivery (et abonnements).
"""
