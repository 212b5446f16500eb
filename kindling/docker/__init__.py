"""Docker-backed nodes, networks, image pulling and container creation plans."""