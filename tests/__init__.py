"""
meshpic Test Suite

Tests organized by:
- test_mesh.py: Simplex mesh topology, geometry and generators
- test_localizer.py: Localizer tables and mesh validation
- test_locator.py: Point location and the relocation walk
- test_particles.py: Per-cell particle storage
- test_objects.py: Boundary objects and the capacitance circuit
- test_population.py: Update passes of the population engine
- test_io.py: Particle checkpoint files
- test_diagnostics.py: Speed statistics, conservation and history
- test_performance.py: Throughput gate (marked 'performance')
"""
