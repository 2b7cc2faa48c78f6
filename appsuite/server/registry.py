"""Bookkeeping of the customers, restaurants and delivery workers a server knows."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, Mapping

from .apps_info import DeliveryInfo, Position, RestaurantData
from .messages import UpdateNetworkState

log = logging.getLogger(__name__)

DEFAULT_MAX_RESTAURANT_DISTANCE = 10
DEFAULT_MAX_DELIVERY_DISTANCE = 10


def distance_squared(a: Position, b: Position) -> int:
    """Return the squared euclidean distance between two grid positions."""
    dx = a[0] - b[0]
    dy = a[1] - b[1]
    return dx * dx + dy * dy


@dataclass
class Registry:
    """Clients registered with a server and the ids handed out to them.

    Every customer, delivery worker and restaurant gets its id from the same
    counter, ``clients_connected``.
    """

    max_restaurant_distance: int = DEFAULT_MAX_RESTAURANT_DISTANCE
    max_delivery_distance: int = DEFAULT_MAX_DELIVERY_DISTANCE
    ids_count: int = 0
    clients_connected: int = 0
    customers: dict[str, int] = field(default_factory=dict)
    delivery_workers: list[int] = field(default_factory=list)
    delivery_workers_info: list[DeliveryInfo] = field(default_factory=list)
    restaurants: dict[str, RestaurantData] = field(default_factory=dict)

    def _next_id(self) -> int:
        self.clients_connected += 1
        return self.clients_connected

    def customer_connected(self, name: str) -> int:
        """Return the id of the customer, registering it if it is new."""
        existing = self.customers.get(name)
        if existing is not None:
            log.info("[SERVER] Volvio el comensal %s con ID %s.", name, existing)
            return existing
        customer_id = self._next_id()
        self.customers[name] = customer_id
        log.info("[SERVER] Bienvenido a la App, comensal %s con ID %s.", name, customer_id)
        return customer_id

    def delivery_worker_connected(self, name: str) -> int:
        """Assign a new id to a delivery worker that logged in."""
        worker_id = self._next_id()
        self.delivery_workers.append(worker_id)
        log.info("[SERVER] Repartidor %s conectado con ID %s.", name, worker_id)
        return worker_id

    def new_restaurant(self, name: str, socket: str, position: Position) -> RestaurantData:
        """Register a restaurant; a known one only has its socket updated."""
        if name in self.restaurants:
            log.info("El restaurante '%s' existe con ID %s", name, self.restaurants[name].id)
            self.update_restaurant_socket(name, socket)
            return replace(self.restaurants[name])
        restaurant = RestaurantData(name=name, socket=socket, id=self._next_id(), position=position)
        self.restaurants[name] = restaurant
        log.info("[SERVER]: Nuevo restaurante %s con ID %s", name, restaurant.id)
        return replace(restaurant)

    def update_restaurant_socket(self, name: str, socket: str) -> bool:
        """Set a known restaurant's socket; return whether the restaurant exists."""
        restaurant = self.restaurants.get(name)
        if restaurant is None:
            return False
        log.debug("Viejo Socket: %s, Nuevo Socket: %s", restaurant.socket, socket)
        restaurant.socket = socket
        return True

    def nearby_restaurants(self, position: Position) -> list[RestaurantData]:
        """Return the restaurants within the maximum restaurant distance."""
        limit = self.max_restaurant_distance * self.max_restaurant_distance
        return [
            replace(restaurant)
            for restaurant in self.restaurants.values()
            if distance_squared(position, restaurant.position) <= limit
        ]

    def register_delivery(self, position: Position, socket: str) -> DeliveryInfo:
        """Register an available delivery worker under a new id."""
        worker_id = self._next_id()
        self.delivery_workers.append(worker_id)
        info = DeliveryInfo(id=worker_id, position=position, socket=socket)
        self.delivery_workers_info.append(info)
        log.info("[SERVER] Delivery #%s registrado en %s", worker_id, position)
        return replace(info)

    def nearby_deliveries(self, position: Position) -> list[DeliveryInfo]:
        """Return available workers in range, or all of them by distance if none is."""
        limit = self.max_delivery_distance * self.max_delivery_distance
        available = self.delivery_workers_info
        nearby = [
            replace(info)
            for info in available
            if distance_squared(info.position, position) <= limit
        ]
        if not nearby and available:
            log.info("[SERVER] Ninguno en rango, reintentando con todos ordenados por distancia")
            nearby = [
                replace(info)
                for info in sorted(
                    available, key=lambda info: distance_squared(info.position, position)
                )
            ]
        return nearby

    def busy_delivery(self, delivery_id: int) -> bool:
        """Remove a worker from the available pool; return whether it was there."""
        before = len(self.delivery_workers_info)
        self.delivery_workers_info = [
            info for info in self.delivery_workers_info if info.id != delivery_id
        ]
        after = len(self.delivery_workers_info)
        log.info(
            "[SERVER] Delivery #%s ocupado -> removido de pool (%s→%s remain)",
            delivery_id,
            before,
            after,
        )
        return after != before

    def free_delivery(self, delivery_id: int, position: Position, socket: str) -> DeliveryInfo:
        """Put a worker back into the available pool."""
        info = DeliveryInfo(id=delivery_id, position=position, socket=socket)
        self.delivery_workers_info.append(info)
        log.info("[SERVER] Delivery #%s libre → reingresado al pool", delivery_id)
        return replace(info)

    def network_state(
        self,
        disconnected_servers: Iterable[int],
        udp_sockets_replicas: Mapping[int, str],
    ) -> UpdateNetworkState:
        """Snapshot of the registry to send to the replicas."""
        return UpdateNetworkState(
            ids_count=self.ids_count,
            deliveries={str(info.id): replace(info) for info in self.delivery_workers_info},
            customers=dict(self.customers),
            restaurants=copy.deepcopy(self.restaurants),
            udp_sockets_replicas=dict(udp_sockets_replicas),
            disconnected_servers=list(disconnected_servers),
        )

    def apply_network_state(self, state: UpdateNetworkState) -> None:
        """Replace the registry's contents with a snapshot from the leader."""
        self.customers = dict(state.customers)
        self.delivery_workers_info = [replace(info) for info in state.deliveries.values()]
        self.restaurants = copy.deepcopy(state.restaurants)
        self.clients_connected = state.ids_count