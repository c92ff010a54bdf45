# Centerline Tracing Parameter Summary
# This file documents the key parameters used by the centerline tracer
# and explains their effects on the results.

#------------------------------------------------------------------------------
# Cost Map Parameters
#------------------------------------------------------------------------------

# Polarity of the vessel lumen
BRIGHT_VESSELS = True
# Effect: True for bright-blood data (contrast-enhanced MRA, CTA)
# False for dark-blood data where the lumen is darker than the wall

# Exponent applied to (1 - affinity)
COST_EXPONENT = 1.0
# Effect: Larger values sharpen the preference for the vessel interior
# and keep the path away from the wall, but make dim vessel segments expensive

# Smallest cost any voxel can have
COST_FLOOR = 1e-6
# Effect: Keeps every edge weight strictly positive
# Must stay well below the cost of background voxels (1.0)

#------------------------------------------------------------------------------
# Path Search Parameters
#------------------------------------------------------------------------------

# Maximum number of voxels settled by the search (None = all searchable voxels)
MAX_ITERATIONS = None
# Effect: Lower values bound run time on pathological volumes
# Too low makes long vessels fail with a search limit error

# Margin around the start/end bounding box in mm (None = whole volume)
SEARCH_MARGIN_MM = None
# Effect: Smaller margins are faster on large volumes
# but may miss the optimal path if the vessel detours outside the box

#------------------------------------------------------------------------------
# Smoothing Parameters
#------------------------------------------------------------------------------

# Catmull-Rom points inserted between consecutive voxel centers
SUBDIVISIONS = 3
# Effect: More points give a smoother curve and a denser radius profile
# at the cost of more radius samples and more mask segments

#------------------------------------------------------------------------------
# Radius Estimation Parameters
#------------------------------------------------------------------------------

# Initial radius estimate in mm
INITIAL_RADIUS_MM = 5.0
# Effect: Scales the radial search range; also returned where no boundary
# can be detected (no contrast, center outside the image)

# Radial search range as a multiple of the initial radius
RADIUS_SEARCH_FACTOR = 2.0
# Effect: Larger values find boundaries of vessels wider than the initial guess
# but rays may reach neighboring structures before stopping

# Absolute upper bound on the radial search in mm
MAX_RADIUS_MM = 20.0

# Number of rays cast in the plane orthogonal to the tangent
RADIUS_DIRECTIONS = 16
# Effect: More rays make the median more robust to side branches

# Radial step as a fraction of the smallest voxel spacing
RADIAL_STEP_FRACTION = 0.5

# Fraction of the center/background contrast that marks the wall
BOUNDARY_FRACTION = 0.5
# Effect: 0.5 is the half-maximum rule; lower values push the wall outward

# Radius returned when no boundary can be measured (mm)
FALLBACK_RADIUS_MM = 1.0

#------------------------------------------------------------------------------
# Mask Parameters
#------------------------------------------------------------------------------

# Worker threads used to rasterize the tube (z-slabs)
MASK_WORKERS = 1
