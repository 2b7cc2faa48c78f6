"""Delivery-app server with replication and ring-based leader election."""