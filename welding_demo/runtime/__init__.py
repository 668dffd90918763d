"""Runtime modules: robot state, loop pacing and the simulated controller thread."""
